"""
Policy Engine

Capability evaluation for every read and write path. ``can`` answers a single
question about one resource; ``get_accessible_event_ids`` answers the same
question for many events at once using the actor's prefetched memberships, so
filtering N events costs a fixed number of queries.

Decision order:
  1. No actor: only ``view`` is considered, and only public resources (or
     resources whose owning event is public) pass.
  2. Banned actor: denied.
  3. API-key actor uploading with a key that lacks ``can_upload``: denied.
  4. Global admin: allowed.
  5. Per-resource rule. Unknown action/resource pairs are denied.

Any exception raised while evaluating is logged and treated as a denial.
"""

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.exceptions import AuthenticationError, AuthorizationError
from eventlens.models import (
    APIKey,
    Event,
    EventAdmin,
    EventParticipant,
    Media,
    MediaComment,
    Report,
    Series,
    SeriesAdmin,
    ShareLink,
    User,
)
from eventlens.models.enums import Visibility
from eventlens.policy.types import (
    RESOURCE_TYPES,
    Action,
    AdminResource,
    ApiKeyResource,
    CommentResource,
    EventCandidate,
    EventResource,
    MediaResource,
    MentionResource,
    ReportResource,
    Resource,
    ResourceType,
    SeriesResource,
    ShareLinkResource,
    StorageResource,
    TagResource,
    UserContext,
    UserResource,
)

logger = logging.getLogger(__name__)

MANAGE_ACTIONS = frozenset({Action.UPDATE, Action.DELETE, Action.MANAGE})
ANONYMOUS_VIEWABLE = (EventResource, SeriesResource, MediaResource, MentionResource)


class PolicyEngine:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ── Actor resolution ──────────────────────────────────────────────────────

    async def get_user_context(self, user_id: str | None) -> UserContext | None:
        """
        Build the acting user's context: flags plus every series and event
        they administer. Returns None for anonymous callers, unknown ids and
        deleted accounts.
        """
        if not user_id:
            return None

        user = await self.db.get(User, user_id)
        if user is None or user.deleted_at is not None:
            return None

        series_rows = await self.db.execute(select(SeriesAdmin.series_id).where(SeriesAdmin.user_id == user_id))
        event_rows = await self.db.execute(select(EventAdmin.event_id).where(EventAdmin.user_id == user_id))

        return UserContext(
            id=user.id,
            is_global_admin=bool(user.is_global_admin),
            is_banned=bool(user.is_banned),
            series_admin_ids=frozenset(series_rows.scalars().all()),
            event_admin_ids=frozenset(event_rows.scalars().all()),
        )

    # ── Core check ────────────────────────────────────────────────────────────

    async def can(
        self,
        actor: UserContext | None,
        action: Action,
        resource_type: ResourceType,
        resource: Resource | str | None = None,
        *,
        invite_code: str | None = None,
    ) -> bool:
        """
        Return True if *actor* may perform *action* on the resource.

        *resource* may be a resource variant, the id of a row to load, or
        None for type-level checks such as ``create``. Never raises.
        """
        try:
            return await self._evaluate(actor, Action(action), ResourceType(resource_type), resource, invite_code)
        except Exception:
            logger.exception(
                "Policy evaluation failed for %s %s on %s; denying",
                actor.id if actor else "anonymous",
                action,
                resource_type,
            )
            return False

    async def authorize(
        self,
        actor: UserContext | None,
        action: Action,
        resource_type: ResourceType,
        resource: Resource | str | None = None,
        **kwargs,
    ) -> None:
        """
        Raise AuthenticationError for anonymous callers and AuthorizationError
        for identified callers that ``can`` denies.
        """
        if await self.can(actor, action, resource_type, resource, **kwargs):
            return
        if actor is None:
            raise AuthenticationError()
        raise AuthorizationError(action=Action(action).value, resource_type=ResourceType(resource_type).value)

    async def _evaluate(
        self,
        actor: UserContext | None,
        action: Action,
        resource_type: ResourceType,
        resource: Resource | str | None,
        invite_code: str | None,
    ) -> bool:
        if isinstance(resource, str):
            resource = await self.load_resource(resource_type, resource)
            if resource is None:
                return False
        elif resource is not None and RESOURCE_TYPES.get(type(resource)) != resource_type:
            logger.warning("Resource %r does not match resource type %s", type(resource).__name__, resource_type)
            return False

        if actor is None:
            if action != Action.VIEW or not isinstance(resource, ANONYMOUS_VIEWABLE):
                return False
        else:
            if actor.is_banned:
                return False
            if action == Action.UPLOAD and actor.api_key is not None and not actor.api_key.can_upload:
                return False
            if actor.is_global_admin:
                return True

        if resource is None:
            return self._check_type_level(actor, action, resource_type)

        rule = self._rules.get(type(resource))
        if rule is None:
            return False
        return await rule(self, actor, action, resource, invite_code)

    # ── Rules ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _check_type_level(actor: UserContext | None, action: Action, resource_type: ResourceType) -> bool:
        """Checks without a concrete resource: creation and own-collection listing."""
        if actor is None:
            return False
        if resource_type in (ResourceType.EVENT, ResourceType.SERIES):
            return action == Action.CREATE
        if resource_type == ResourceType.API_KEY:
            return action in (Action.CREATE, Action.VIEW)
        return False

    @staticmethod
    def is_event_admin(actor: UserContext | None, event: EventResource | EventCandidate) -> bool:
        if actor is None:
            return False
        if actor.is_global_admin or event.id in actor.event_admin_ids:
            return True
        return event.series_id is not None and event.series_id in actor.series_admin_ids

    async def _event_rule(self, actor, action, event: EventResource, invite_code) -> bool:
        if action in (Action.VIEW, Action.DOWNLOAD):
            return await self.can_view_event(actor, event)
        if action in MANAGE_ACTIONS:
            return self.is_event_admin(actor, event)
        if action == Action.JOIN:
            if self.is_event_admin(actor, event) or not event.requires_invite:
                return True
            return invite_code is not None and event.invite_code is not None and invite_code == event.invite_code
        if action == Action.LEAVE:
            return await self._is_participant(actor.id, event.id)
        if action == Action.UPLOAD:
            if self.is_event_admin(actor, event):
                return True
            return await self._is_participant(actor.id, event.id)
        return False

    async def can_view_event(self, actor: UserContext | None, event: EventResource) -> bool:
        if event.visibility == Visibility.PUBLIC:
            return True
        if actor is None or actor.is_banned:
            return False
        if event.visibility == Visibility.AUTH_REQUIRED:
            return True
        if self.is_event_admin(actor, event) or event.created_by_id == actor.id:
            return True
        return await self._is_participant(actor.id, event.id)

    async def _series_rule(self, actor, action, series: SeriesResource, invite_code) -> bool:
        is_series_admin = actor is not None and (actor.is_global_admin or series.id in actor.series_admin_ids)
        if action == Action.VIEW:
            if series.visibility == Visibility.PUBLIC:
                return True
            if actor is None:
                return False
            if series.visibility == Visibility.AUTH_REQUIRED:
                return True
            return is_series_admin
        if action in MANAGE_ACTIONS:
            return is_series_admin
        return False

    async def _media_rule(self, actor, action, media: MediaResource, invite_code) -> bool:
        if action in (Action.VIEW, Action.INTERACT, Action.DOWNLOAD):
            return await self.can_view_event(actor, media.event)
        if action in (Action.DELETE, Action.UPDATE):
            if actor.id == media.uploaded_by_id:
                return True
            return self.is_event_admin(actor, media.event)
        return False

    async def _comment_rule(self, actor, action, comment: CommentResource, invite_code) -> bool:
        if action == Action.CREATE:
            return await self.can_view_event(actor, comment.media.event)
        if action == Action.DELETE:
            if actor.id == comment.user_id:
                return True
            return self.is_event_admin(actor, comment.media.event)
        return False

    async def _mention_rule(self, actor, action, mention: MentionResource, invite_code) -> bool:
        if action in (Action.VIEW, Action.CREATE):
            return await self.can_view_event(actor, mention.media.event)
        if action == Action.DELETE:
            if actor.id in (mention.media.uploaded_by_id, mention.user_id):
                return True
            return self.is_event_admin(actor, mention.media.event)
        return False

    async def _share_link_rule(self, actor, action, link: ShareLinkResource, invite_code) -> bool:
        if action == Action.CREATE:
            if link.media is None or not link.media.event.allow_public_sharing:
                return False
            return await self.can_view_event(actor, link.media.event)
        if action == Action.DELETE:
            return link.created_by_id is not None and link.created_by_id == actor.id
        return False

    async def _api_key_rule(self, actor, action, key: ApiKeyResource, invite_code) -> bool:
        if key.user_id != actor.id:
            return False
        return action in (Action.VIEW, Action.UPDATE, Action.DELETE, Action.MANAGE)

    async def _report_rule(self, actor, action, report: ReportResource, invite_code) -> bool:
        if action == Action.CREATE and report.media is not None:
            return await self.can_view_event(actor, report.media.event)
        return False

    async def _user_rule(self, actor, action, user: UserResource, invite_code) -> bool:
        return user.id == actor.id and action in (Action.VIEW, Action.UPDATE, Action.DELETE)

    async def _global_admin_only(self, actor, action, resource, invite_code) -> bool:
        # Global admins have already been allowed above.
        return False

    _rules = {
        EventResource: _event_rule,
        SeriesResource: _series_rule,
        MediaResource: _media_rule,
        CommentResource: _comment_rule,
        MentionResource: _mention_rule,
        ShareLinkResource: _share_link_rule,
        ApiKeyResource: _api_key_rule,
        ReportResource: _report_rule,
        UserResource: _user_rule,
        TagResource: _global_admin_only,
        StorageResource: _global_admin_only,
        AdminResource: _global_admin_only,
    }

    # ── Bulk resolution ───────────────────────────────────────────────────────

    async def get_accessible_event_ids(
        self,
        actor_id: str | None,
        candidates: Sequence[EventCandidate],
    ) -> list[str]:
        """
        Return the ids of *candidates* visible to *actor_id*, in input order.

        Uses at most one actor lookup (three queries) and one batched
        participation query regardless of how many candidates are given.
        Knowing an unlisted event's invite code does not make it listable;
        only participation, administration or authorship does.
        """
        candidates = list(candidates)
        public_ids = [c.id for c in candidates if c.visibility == Visibility.PUBLIC]
        if not actor_id or len(public_ids) == len(candidates):
            return public_ids

        actor = await self.get_user_context(actor_id)
        if actor is None or actor.is_banned:
            return public_ids
        if actor.is_global_admin:
            return [c.id for c in candidates]

        unresolved = {
            c.id
            for c in candidates
            if c.visibility == Visibility.UNLISTED
            and not self.is_event_admin(actor, c)
            and c.created_by_id != actor.id
        }
        participating = await self._participating_event_ids(actor.id, unresolved)

        return [
            c.id
            for c in candidates
            if c.visibility != Visibility.UNLISTED
            or c.id in participating
            or c.id not in unresolved
        ]

    async def get_accessible_event_ids_for_user(self, actor_id: str | None) -> list[str]:
        """Resolve visibility over every event."""
        result = await self.db.execute(
            select(Event.id, Event.visibility, Event.series_id, Event.created_by_id).order_by(Event.created_at.desc())
        )
        candidates = [EventCandidate(row[0], Visibility(row[1]), row[2], row[3]) for row in result.all()]
        return await self.get_accessible_event_ids(actor_id, candidates)

    async def filter_deletable_media(self, actor: UserContext | None, items: Iterable[Media]) -> list[Media]:
        """Return the media *actor* may delete, evaluated in memory."""
        items = list(items)
        if actor is None or actor.is_banned or not items:
            return []
        if actor.is_global_admin:
            return items

        events = await self._events_by_id({m.event_id for m in items})
        deletable = []
        for item in items:
            event = events.get(item.event_id)
            if item.uploaded_by_id == actor.id or (event is not None and self.is_event_admin(actor, event)):
                deletable.append(item)
        return deletable

    async def augment_media_with_permissions(self, actor: UserContext | None, items: Iterable[Media]) -> list[dict]:
        """Serialize media with a ``can_delete`` flag for the acting user."""
        items = list(items)
        deletable = {m.id for m in await self.filter_deletable_media(actor, items)}
        return [{**m.to_dict(), "can_delete": m.id in deletable} for m in items]

    # ── Lookups ───────────────────────────────────────────────────────────────

    async def _is_participant(self, user_id: str, event_id: str) -> bool:
        result = await self.db.execute(
            select(EventParticipant.id).where(
                EventParticipant.user_id == user_id,
                EventParticipant.event_id == event_id,
            )
        )
        return result.first() is not None

    async def _participating_event_ids(self, user_id: str, event_ids: set[str]) -> set[str]:
        if not event_ids:
            return set()
        result = await self.db.execute(
            select(EventParticipant.event_id).where(
                EventParticipant.user_id == user_id,
                EventParticipant.event_id.in_(event_ids),
            )
        )
        return set(result.scalars().all())

    async def _events_by_id(self, event_ids: set[str]) -> dict[str, EventResource]:
        if not event_ids:
            return {}
        result = await self.db.execute(select(Event).where(Event.id.in_(event_ids)))
        return {e.id: EventResource.from_model(e) for e in result.scalars().all()}

    async def _media_resource(self, media_id: str | None) -> MediaResource | None:
        if not media_id:
            return None
        result = await self.db.execute(select(Media, Event).join(Event, Media.event_id == Event.id).where(Media.id == media_id))
        row = result.first()
        if row is None:
            return None
        return MediaResource.from_model(row[0], row[1])

    async def load_resource(self, resource_type: ResourceType, resource_id: str) -> Resource | None:
        """Load the resource variant for *resource_id*, or None when it does not exist."""
        if resource_type == ResourceType.EVENT:
            event = await self.db.get(Event, resource_id)
            return EventResource.from_model(event) if event else None
        if resource_type == ResourceType.SERIES:
            series = await self.db.get(Series, resource_id)
            return SeriesResource.from_model(series) if series else None
        if resource_type == ResourceType.MEDIA:
            return await self._media_resource(resource_id)
        if resource_type == ResourceType.MENTION:
            media = await self._media_resource(resource_id)
            return MentionResource(media=media) if media else None
        if resource_type == ResourceType.SHARE_LINK:
            link = await self.db.get(ShareLink, resource_id)
            if link is None:
                return None
            return ShareLinkResource(
                media=await self._media_resource(link.media_id),
                created_by_id=link.created_by_id,
                token=link.token,
            )
        if resource_type == ResourceType.COMMENT:
            comment = await self.db.get(MediaComment, resource_id)
            if comment is None:
                return None
            media = await self._media_resource(comment.media_id)
            return CommentResource(id=comment.id, user_id=comment.user_id, media=media) if media else None
        if resource_type == ResourceType.API_KEY:
            key = await self.db.get(APIKey, resource_id)
            return ApiKeyResource(id=key.id, user_id=key.user_id) if key else None
        if resource_type == ResourceType.REPORT:
            report = await self.db.get(Report, resource_id)
            return ReportResource(id=report.id, media=await self._media_resource(report.media_id)) if report else None
        if resource_type == ResourceType.USER:
            user = await self.db.get(User, resource_id)
            return UserResource(id=user.id) if user else None
        if resource_type == ResourceType.TAG:
            return TagResource(id=resource_id)
        return None
