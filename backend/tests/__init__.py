# Register every table model with SQLModel metadata before any fixture calls create_all
from app.models.match import Match  # noqa: F401
from app.models.match_set import MatchSet  # noqa: F401
from app.models.phase import Phase, PhaseGroup  # noqa: F401
from app.models.team import Team  # noqa: F401
from app.models.tournament import Tournament  # noqa: F401
from app.models.tournament_activity import TournamentActivity  # noqa: F401
