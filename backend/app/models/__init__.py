from app.models.match import Match
from app.models.match_set import MatchSet
from app.models.phase import Phase, PhaseGroup
from app.models.team import Team
from app.models.tournament import Tournament
from app.models.tournament_activity import TournamentActivity

__all__ = [
    "Tournament",
    "Team",
    "Phase",
    "PhaseGroup",
    "Match",
    "MatchSet",
    "TournamentActivity",
]
