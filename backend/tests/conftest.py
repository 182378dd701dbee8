"""
Shared test fixtures for the Editor Payout Engine test suite.

Every test gets its own SQLite database file under tmp_path, created with the
same engine settings as production (BEGIN IMMEDIATE write transactions).

The `factory` fixture builds catalog rows, users, projects and milestones and
commits after each call. Children are attached through the project's
relationships so the in-memory collections stay current
(the session does not expire objects on commit).
"""

import sys
import os
import uuid
from datetime import datetime
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from database import init_db, make_engine, make_session_factory
from models.db_models import (
    BonusGrantDB, BonusSource, MilestoneDB, MilestoneStatus, ProjectDB,
    ProjectEditorDB, ProjectStatus, Tier, UserDB, UserRole,
)
from services.rate_catalog import RateCatalog

CATALOG_START = datetime(2020, 1, 1)


class Factory:
    def __init__(self, db):
        self.db = db

    def commit(self):
        self.db.commit()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    def tier_rate(self, tier=Tier.STANDARD, rate="10", rush_eligible=False,
                  active=True, effective_from=CATALOG_START):
        row = RateCatalog(self.db).publish_tier_rate(
            tier, Decimal(rate), rush_eligible=rush_eligible,
            active=active, effective_from=effective_from,
        )
        self.commit()
        return row

    def sku(self, sku_code="EDIT", base="100", budget_pct="0.5", pool_pct="0.1",
            difficulty="1", active=True, effective_from=CATALOG_START):
        row = RateCatalog(self.db).publish_sku_config(
            sku_code,
            billable_minutes_base=Decimal(base),
            editor_budget_pct=Decimal(budget_pct),
            difficulty_factor_default=Decimal(difficulty),
            incentive_pool_pct=Decimal(pool_pct),
            name=sku_code.title(),
            active=active,
            effective_from=effective_from,
        )
        self.commit()
        return row

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def user(self, name="Asha", role=UserRole.EDITOR, tier=Tier.STANDARD,
             balance="0", lifetime=None, override=None, payout_details=None):
        user = UserDB(
            id=str(uuid.uuid4()),
            name=name,
            email=f"{name.lower()}-{uuid.uuid4().hex[:8]}@example.com",
            role=role,
            tier=tier,
            tier_rate_override=Decimal(override) if override is not None else None,
            unlocked_balance=Decimal(balance),
            lifetime_earnings=Decimal(lifetime if lifetime is not None else balance),
            payout_details=payout_details,
        )
        self.db.add(user)
        self.commit()
        return user

    def admin(self, name="Root"):
        return self.user(name=name, role=UserRole.SUPER_ADMIN, tier=None)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------
    def project(self, sku_code="EDIT", total_price="10000",
                status=ProjectStatus.ACTIVE, is_rush=False, name="Launch Reel"):
        project = ProjectDB(
            id=str(uuid.uuid4()),
            name=name,
            sku_code=sku_code,
            total_price=Decimal(total_price),
            status=status,
            is_rush=is_rush,
        )
        self.db.add(project)
        self.commit()
        return project

    def assign(self, project, editor, budget_share=None):
        project.editors.append(ProjectEditorDB(
            editor_id=editor.id,
            budget_share=Decimal(budget_share) if budget_share is not None else None,
        ))
        self.commit()

    def milestone(self, project, editor, status=MilestoneStatus.APPROVED,
                  qc=(5, 5, 5), billable_minutes=None, difficulty=None,
                  late_minutes=None, qc_weight=None, title="Cut"):
        g, av, sr = qc if qc is not None else (None, None, None)
        milestone = MilestoneDB(
            id=str(uuid.uuid4()),
            title=title,
            assigned_editor_id=editor.id if editor is not None else None,
            status=status,
            qc_guidelines_score=Decimal(str(g)) if g is not None else None,
            qc_av_quality_score=Decimal(str(av)) if av is not None else None,
            qc_self_reliance_score=Decimal(str(sr)) if sr is not None else None,
            qc_weight=Decimal(qc_weight) if qc_weight is not None else None,
            late_minutes=Decimal(late_minutes) if late_minutes is not None else None,
            billable_minutes=Decimal(billable_minutes) if billable_minutes is not None else None,
            difficulty_factor=Decimal(difficulty) if difficulty is not None else None,
        )
        project.milestones.append(milestone)
        self.commit()
        return milestone

    def grant(self, project, editor, code="MISSION_1", amount="200", source=BonusSource.MISSION):
        grant = BonusGrantDB(
            editor_id=editor.id, code=code, amount=Decimal(amount), source=source,
        )
        project.bonus_grants.append(grant)
        self.commit()
        return grant

    def complete(self, project):
        project.status = ProjectStatus.COMPLETED
        self.commit()

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------
    def standard_project(self, status=ProjectStatus.COMPLETED, total_price="10000",
                         budget_pct="0.5", pool_pct="0.1", qc=(5, 5, 5), late_minutes=None):
        """
        One STANDARD editor at ₹10/min with a single approved 100-minute
        milestone on an EDIT project.
        """
        self.tier_rate(Tier.STANDARD, "10")
        self.sku("EDIT", base="100", budget_pct=budget_pct, pool_pct=pool_pct)
        editor = self.user("Asha")
        project = self.project("EDIT", total_price=total_price, status=status)
        self.assign(project, editor)
        self.milestone(project, editor, qc=qc, late_minutes=late_minutes)
        return project, editor


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'payouts.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def factory(db):
    return Factory(db)
