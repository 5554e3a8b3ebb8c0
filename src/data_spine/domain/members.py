"""Sample domain: members belonging to teams.

``Member.team`` is a lazy to-one reference (``member.team_id``);
``Team.members`` is the inverse collection mapped by it.
"""

from __future__ import annotations

from dataclasses import dataclass

from data_spine.associations import association
from data_spine.registry import EntityRegistry


class Team:
    id: int | None
    name: str

    members = association("Member", many=True, mapped_by="team")

    def __init__(self, name: str) -> None:
        self.id = None
        self.name = name
        self.members = []

    def __repr__(self) -> str:
        return f"Team(id={self.id}, name={self.name!r})"


class Member:
    id: int | None
    username: str
    age: int

    team = association(Team, foreign_key="team_id")

    def __init__(self, username: str, age: int = 0, team: Team | None = None) -> None:
        self.id = None
        self.username = username
        self.age = age
        if team is not None:
            self.change_team(team)

    def change_team(self, team: Team) -> None:
        """Point this member at ``team`` and keep the loaded inverse side in step."""
        self.team = team
        team.members.append(self)

    def __repr__(self) -> str:
        return f"Member(id={self.id}, username={self.username!r}, age={self.age})"


@dataclass(frozen=True, slots=True)
class MemberDto:
    """Projection of a member with its team name."""

    id: int
    username: str
    team_name: str | None = None


def build_registry() -> EntityRegistry:
    """Frozen registry with :class:`Team` and :class:`Member`."""
    registry = EntityRegistry()
    registry.register(Team, table="team")
    registry.register(Member, table="member")
    return registry.freeze()


__all__ = ["Member", "Team", "MemberDto", "build_registry"]
