"""
articleflow/features/drafts/entities.py

Persistence for finalized entities (article styles, onboarding profiles) and
the draft -> entity conversion used at finalization.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, insert, update, delete
from sqlalchemy.orm import Session, sessionmaker

from articleflow.core.database import (
    article_styles,
    onboarding_profiles,
    session_scope,
    utc_now,
)
from articleflow.models.drafts import (
    ArticleStyle,
    DraftKind,
    FinalizedEntity,
    OnboardingProfile,
)


def _row_to_style(row) -> ArticleStyle:
    return ArticleStyle(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        style_samples=list(row.style_samples or []),
        subjects=list(row.subjects or []),
        email=row.email,
        display_name=row.display_name,
        preferred_language=row.preferred_language,
        delivery_days=list(row.delivery_days or []),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_profile(row) -> OnboardingProfile:
    return OnboardingProfile(
        id=row.id,
        user_id=row.user_id,
        style_samples=list(row.style_samples or []),
        subjects=list(row.subjects or []),
        email=row.email,
        display_name=row.display_name,
        preferred_language=row.preferred_language,
        delivery_days=list(row.delivery_days or []),
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


def build_entity(kind: DraftKind, owner_id: str, fields: dict, now: Optional[datetime] = None) -> FinalizedEntity:
    """Snapshot accumulated draft fields into a finalized entity."""
    ts = now or utc_now()
    common = {
        "id": str(uuid4()),
        "user_id": owner_id,
        "style_samples": list(fields.get("style_samples") or []),
        "subjects": list(fields.get("subjects") or []),
        "preferred_language": fields.get("preferred_language") or "en",
        "delivery_days": list(fields.get("delivery_days") or []),
        "created_at": ts,
    }
    if kind == DraftKind.ARTICLE_STYLE:
        return ArticleStyle(
            name=fields["name"],
            email=fields.get("email") or None,
            display_name=fields.get("display_name") or None,
            is_active=True,
            updated_at=ts,
            **common,
        )
    return OnboardingProfile(
        email=fields["email"],
        display_name=fields["display_name"],
        completed_at=ts,
        **common,
    )


class EntityStore:
    """Keyed access to finalized entities."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def insert(session: Session, entity: FinalizedEntity) -> None:
        """Insert inside the caller's transaction."""
        if isinstance(entity, ArticleStyle):
            session.execute(insert(article_styles).values(**entity.model_dump()))
        else:
            session.execute(insert(onboarding_profiles).values(**entity.model_dump()))

    def get(self, kind: DraftKind, entity_id: str) -> Optional[FinalizedEntity]:
        if kind == DraftKind.ARTICLE_STYLE:
            return self.get_article_style(entity_id)
        return self.get_onboarding_profile(entity_id)

    def get_article_style(self, style_id: str) -> Optional[ArticleStyle]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(article_styles).where(article_styles.c.id == style_id)
            ).fetchone()
            return _row_to_style(row) if row else None

    def update_article_style(self, style_id: str, values: dict) -> Optional[ArticleStyle]:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(article_styles)
                .where(article_styles.c.id == style_id)
                .values(**values, updated_at=utc_now())
            )
            if result.rowcount == 0:
                return None
            row = session.execute(
                select(article_styles).where(article_styles.c.id == style_id)
            ).fetchone()
            return _row_to_style(row)

    def delete_article_style(self, style_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(article_styles).where(article_styles.c.id == style_id)
            )
            return result.rowcount > 0

    def get_onboarding_profile(self, profile_id: str) -> Optional[OnboardingProfile]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(onboarding_profiles).where(onboarding_profiles.c.id == profile_id)
            ).fetchone()
            return _row_to_profile(row) if row else None

    def get_onboarding_profile_for_user(self, user_id: str) -> Optional[OnboardingProfile]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(onboarding_profiles).where(onboarding_profiles.c.user_id == user_id)
            ).fetchone()
            return _row_to_profile(row) if row else None
