"""
Change classification.

A mutation of a page, a participation or a comment is described by a
MutationContext. Each entity kind has an ordered registry of variants; the
first variant whose predicate matches decides the event type of the history
record. No match means the mutation is not worth a record.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from pages.models import GroupParticipation, UserParticipation

from .exceptions import UnmappedAccessLevel
from .models import EventType

CREATE = 'create'
UPDATE = 'update'
DESTROY = 'destroy'

PAGE = 'page'
PARTICIPATION = 'participation'
COMMENT = 'comment'

Changes = Dict[str, Tuple[Any, Any]]

# participations and generic access control name access levels differently
ACCESS_FROM_PARTICIPATION = {
    'view': 'read',
    'edit': 'write',
    'admin': 'full',
}


def access_from_participation(symbol: str) -> str:
    try:
        return ACCESS_FROM_PARTICIPATION[symbol]
    except (KeyError, TypeError):
        raise UnmappedAccessLevel(symbol) from None


@dataclass
class MutationContext:
    kind: str
    action: str
    entity: Any
    page: Any
    actor: Any = None
    changes: Changes = field(default_factory=dict)

    @classmethod
    def for_page(cls, page, action, actor=None):
        return cls(
            kind=PAGE,
            action=action,
            entity=page,
            page=page,
            actor=actor,
            changes=page.get_changes() if action != DESTROY else {},
        )

    @classmethod
    def for_participation(cls, participation, action, actor=None):
        return cls(
            kind=PARTICIPATION,
            action=action,
            entity=participation,
            page=participation.page,
            actor=actor,
            changes=participation.get_changes() if action != DESTROY else {},
        )

    @classmethod
    def for_comment(cls, comment, action, actor=None):
        return cls(
            kind=COMMENT,
            action=action,
            entity=comment,
            page=comment.page,
            actor=actor if actor is not None else comment.user,
            changes=comment.get_changes() if action != DESTROY else {},
        )


@dataclass(frozen=True)
class Variant:
    event_type: str
    matches: Callable[[Changes, MutationContext], bool]
    details: Optional[Callable[[MutationContext], dict]] = None
    subject: Optional[Callable[[MutationContext], Any]] = None
    # page-touching variants move page.updated_at to the record's created_at
    touches_page: bool = False


@dataclass(frozen=True)
class Classification:
    event_type: str
    details: dict
    subject: Any = None
    touches_page: bool = False


def activated(change) -> bool:
    if not change:
        return False
    old, new = change
    return bool(new) and not bool(old)


def deactivated(change) -> bool:
    if not change:
        return False
    old, new = change
    return bool(old) and not bool(new)


def _title_details(context):
    old, new = context.changes.get('title', (None, None))
    return {'from': old, 'to': new}


def _access_details(context):
    return {'access': access_from_participation(context.entity.access)}


def _participation_subject(context):
    return context.entity.subject


def _entity(context):
    return context.entity


def _grants(participation_class):
    def matches(changes, context):
        if context.action == DESTROY or not isinstance(context.entity, participation_class):
            return False
        change = changes.get('access')
        return change is not None and change[1] is not None
    return matches


def _revokes(participation_class):
    def matches(changes, context):
        return context.action == DESTROY and isinstance(context.entity, participation_class)
    return matches


PAGE_VARIANTS = (
    Variant(EventType.PAGE_CREATED, lambda ch, ctx: ctx.action == CREATE, touches_page=True),
    Variant(EventType.DELETED, lambda ch, ctx: activated(ch.get('is_deleted')), touches_page=True),
    Variant(EventType.MAKE_PUBLIC, lambda ch, ctx: activated(ch.get('is_public'))),
    Variant(EventType.MAKE_PRIVATE, lambda ch, ctx: deactivated(ch.get('is_public'))),
    Variant(
        EventType.CHANGE_TITLE,
        lambda ch, ctx: 'title' in ch,
        details=_title_details,
        touches_page=True,
    ),
    Variant(EventType.UPDATED_CONTENT, lambda ch, ctx: 'body' in ch, touches_page=True),
)

PARTICIPATION_VARIANTS = (
    Variant(EventType.ADD_STAR, lambda ch, ctx: activated(ch.get('star'))),
    Variant(EventType.REMOVE_STAR, lambda ch, ctx: deactivated(ch.get('star'))),
    Variant(EventType.START_WATCHING, lambda ch, ctx: activated(ch.get('watch'))),
    Variant(EventType.STOP_WATCHING, lambda ch, ctx: deactivated(ch.get('watch'))),
    Variant(
        EventType.GRANT_GROUP_ACCESS,
        _grants(GroupParticipation),
        details=_access_details,
        subject=_participation_subject,
        touches_page=True,
    ),
    Variant(
        EventType.REVOKED_GROUP_ACCESS,
        _revokes(GroupParticipation),
        subject=_participation_subject,
        touches_page=True,
    ),
    Variant(
        EventType.GRANT_USER_ACCESS,
        _grants(UserParticipation),
        details=_access_details,
        subject=_participation_subject,
        touches_page=True,
    ),
    Variant(
        EventType.REVOKED_USER_ACCESS,
        _revokes(UserParticipation),
        subject=_participation_subject,
        touches_page=True,
    ),
)

COMMENT_VARIANTS = (
    Variant(EventType.ADD_COMMENT, lambda ch, ctx: ctx.action == CREATE, subject=_entity, touches_page=True),
    Variant(
        EventType.UPDATE_COMMENT,
        lambda ch, ctx: ctx.action == UPDATE and bool(ch),
        subject=_entity,
        touches_page=True,
    ),
    Variant(EventType.DESTROY_COMMENT, lambda ch, ctx: ctx.action == DESTROY, subject=_entity, touches_page=True),
)

REGISTRY = {
    PAGE: PAGE_VARIANTS,
    PARTICIPATION: PARTICIPATION_VARIANTS,
    COMMENT: COMMENT_VARIANTS,
}


def classify(context: MutationContext) -> Optional[Classification]:
    """
    Return the classification of the first matching variant, or None.

    Raises UnmappedAccessLevel when an access grant carries an access
    symbol that has no canonical level.
    """
    try:
        variants = REGISTRY[context.kind]
    except KeyError:
        raise ValueError(f"Unknown mutation kind: {context.kind}") from None

    for variant in variants:
        if not variant.matches(context.changes, context):
            continue
        return Classification(
            event_type=variant.event_type,
            details=variant.details(context) if variant.details else {},
            subject=variant.subject(context) if variant.subject else None,
            touches_page=variant.touches_page,
        )
    return None
