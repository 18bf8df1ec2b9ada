"""
Progression engine services.

- snapshot / standings / source_resolver / phase_advancement / tiebreaker:
  pure functions over an in-memory TournamentSnapshot, no database access
- progression_service / match_runtime / fixture_generator / activity_log:
  read and write rows through a SQLModel Session

Routes call into these and translate app.exceptions into HTTP errors.
"""
