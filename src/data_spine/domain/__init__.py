"""Sample Member/Team domain used by the CLI and the test suite."""

from data_spine.domain.members import Member, MemberDto, Team, build_registry

__all__ = ["Member", "MemberDto", "Team", "build_registry"]
