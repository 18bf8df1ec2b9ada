"""Initial migration: tournaments, teams, phases and groups, matches, sets, activity

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("points_for_win", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("points_for_loss", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sets_per_match", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("tiebreaker_rules", sa.JSON(), nullable=True),
        sa.Column("random_draw_budget", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("random_draws_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "team",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("short_name", sa.String(), nullable=True),
        sa.Column("group_name", sa.String(), nullable=True),
        sa.Column("seed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.UniqueConstraint("tournament_id", "name", name="uq_tournament_team_name"),
    )
    op.create_index("ix_team_tournament_id", "team", ["tournament_id"])
    op.create_index("ix_team_group_name", "team", ["group_name"])

    op.create_table(
        "phase",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phase_type", sa.String(), nullable=False, server_default="group"),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.UniqueConstraint("tournament_id", "order", name="uq_tournament_phase_order"),
    )
    op.create_index("ix_phase_tournament_id", "phase", ["tournament_id"])

    op.create_table(
        "phase_group",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phase_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("team_ids", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["phase_id"], ["phase.id"]),
        sa.UniqueConstraint("phase_id", "name", name="uq_phase_group_name"),
    )
    op.create_index("ix_phase_group_phase_id", "phase_group", ["phase_id"])

    op.create_table(
        "match",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("phase_id", sa.Integer(), nullable=False),
        sa.Column("match_number", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("group_name", sa.String(), nullable=True),
        sa.Column("round_index", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("local_team_id", sa.Integer(), nullable=True),
        sa.Column("visitor_team_id", sa.Integer(), nullable=True),
        sa.Column("source_home_type", sa.String(), nullable=True),
        sa.Column("source_home_ref", sa.String(), nullable=True),
        sa.Column("source_home_index", sa.Integer(), nullable=True),
        sa.Column("source_away_type", sa.String(), nullable=True),
        sa.Column("source_away_ref", sa.String(), nullable=True),
        sa.Column("source_away_index", sa.Integer(), nullable=True),
        sa.Column("winner_team_id", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["phase_id"], ["phase.id"]),
        sa.ForeignKeyConstraint(["local_team_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["visitor_team_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["winner_team_id"], ["team.id"]),
    )
    op.create_index("ix_match_tournament_id", "match", ["tournament_id"])
    op.create_index("ix_match_phase_id", "match", ["phase_id"])

    op.create_table(
        "match_set",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("match_id", sa.Integer(), nullable=False),
        sa.Column("set_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("local_runs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("visitor_runs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["match_id"], ["match.id"]),
        sa.UniqueConstraint("match_id", "set_number", name="uq_match_set_number"),
    )
    op.create_index("ix_match_set_match_id", "match_set", ["match_id"])

    op.create_table(
        "tournament_activity",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("activity_type", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
    )
    op.create_index("ix_tournament_activity_tournament_id", "tournament_activity", ["tournament_id"])


def downgrade() -> None:
    op.drop_index("ix_tournament_activity_tournament_id", table_name="tournament_activity")
    op.drop_table("tournament_activity")
    op.drop_index("ix_match_set_match_id", table_name="match_set")
    op.drop_table("match_set")
    op.drop_index("ix_match_phase_id", table_name="match")
    op.drop_index("ix_match_tournament_id", table_name="match")
    op.drop_table("match")
    op.drop_index("ix_phase_group_phase_id", table_name="phase_group")
    op.drop_table("phase_group")
    op.drop_index("ix_phase_tournament_id", table_name="phase")
    op.drop_table("phase")
    op.drop_index("ix_team_group_name", table_name="team")
    op.drop_index("ix_team_tournament_id", table_name="team")
    op.drop_table("team")
    op.drop_table("tournament")
