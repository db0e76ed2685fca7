"""
Session engagement API routes: feeds, student summaries and the class heatmap.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_timeline.config import settings
from engagement_timeline.core.modes import SessionMode, mode_label
from engagement_timeline.core.timekeys import format_time_key, normalize_time_key
from engagement_timeline.database import get_db
from engagement_timeline.schemas.engagement import (
    AttendanceCreate,
    AttendanceResponse,
    ObservationCreate,
    ObservationResponse,
    ModeChangeCreate,
    ModeTimelineResponse,
    StudentSummaryResponse,
    HeatmapResponse,
    HeatmapSeekResponse,
    ModeOverrideRequest,
    LiveStatusResponse,
)
from engagement_timeline.services.engagement_service import (
    NoHeatmapData,
    compute_student_summary,
    compute_class_heatmap,
    get_mode_timeline,
    seek_offset,
)
from engagement_timeline.services.feed_service import (
    FeedSource,
    SqlFeedSource,
    mark_attendance,
    record_observation,
    record_mode_change,
)
from engagement_timeline.services.live_service import LiveSessionHub, SessionContext, live_hub

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions"])


def get_feed_source(db: AsyncSession = Depends(get_db)) -> FeedSource:
    return SqlFeedSource(db)


def get_live_hub() -> LiveSessionHub:
    return live_hub


def _parse_mode_override(value: Optional[str]) -> Optional[SessionMode]:
    if value is None or not value.strip():
        return None
    try:
        return SessionMode(value.strip().lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown session mode: {value}")


def _resolve_time_key(time_key: Optional[str]) -> str:
    if time_key is None or not time_key.strip():
        return format_time_key(tz=settings.TIMEKEY_TIMEZONE)
    key = time_key.strip()
    if normalize_time_key(key, settings.TIMEKEY_TIMEZONE) is None:
        raise HTTPException(status_code=400, detail=f"Invalid time key: {time_key}")
    return key


def _live_status(hub: LiveSessionHub, session_code: str, context: Optional[SessionContext]) -> LiveStatusResponse:
    if context is None:
        return LiveStatusResponse(session_code=session_code, running=False, last_sequence=0)
    return LiveStatusResponse(
        session_code=session_code,
        running=hub.is_running(session_code),
        mode_override=mode_label(context.mode_override) if context.mode_override is not None else None,
        last_sequence=context.scheduler.applied,
        latest=context.latest,
    )


@router.post("/{session_code}/attendance", response_model=AttendanceResponse, status_code=status.HTTP_201_CREATED)
async def mark_session_attendance(
    session_code: str,
    body: AttendanceCreate,
    db: AsyncSession = Depends(get_db),
):
    entry = await mark_attendance(
        db,
        session_code=session_code,
        student_id=body.student_id,
        display_name=body.display_name,
        profile_image=body.profile_image,
    )
    return AttendanceResponse.model_validate(entry)


@router.get("/{session_code}/attendance", response_model=list[AttendanceResponse])
async def list_session_attendance(
    session_code: str,
    feed: FeedSource = Depends(get_feed_source),
):
    return [AttendanceResponse(**entry) for entry in await feed.get_attendance(session_code)]


@router.post(
    "/{session_code}/students/{student_id}/observations",
    response_model=ObservationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_observation(
    session_code: str,
    student_id: str,
    body: ObservationCreate,
    db: AsyncSession = Depends(get_db),
):
    time_key = _resolve_time_key(body.time_key)
    payload = body.model_dump(exclude={"time_key"}, exclude_none=True)
    await record_observation(db, session_code, student_id, time_key, payload)
    return ObservationResponse(
        session_code=session_code,
        student_id=student_id,
        time_key=time_key,
        time_ms=normalize_time_key(time_key, settings.TIMEKEY_TIMEZONE),
    )


@router.post("/{session_code}/mode", response_model=ModeTimelineResponse, status_code=status.HTTP_201_CREATED)
async def declare_mode_change(
    session_code: str,
    body: ModeChangeCreate,
    db: AsyncSession = Depends(get_db),
    feed: FeedSource = Depends(get_feed_source),
):
    time_key = _resolve_time_key(body.time_key)
    await record_mode_change(db, session_code, time_key, body.mode.value)
    timeline = await get_mode_timeline(feed, session_code)
    return ModeTimelineResponse(
        session_code=session_code,
        default_mode=mode_label(timeline.default_mode),
        events=timeline.to_list(),
    )


@router.get("/{session_code}/modes", response_model=ModeTimelineResponse)
async def get_session_modes(
    session_code: str,
    feed: FeedSource = Depends(get_feed_source),
):
    timeline = await get_mode_timeline(feed, session_code)
    return ModeTimelineResponse(
        session_code=session_code,
        default_mode=mode_label(timeline.default_mode),
        events=timeline.to_list(),
    )


@router.get("/{session_code}/students/{student_id}/summary", response_model=StudentSummaryResponse)
async def get_student_summary(
    session_code: str,
    student_id: str,
    feed: FeedSource = Depends(get_feed_source),
):
    return await compute_student_summary(feed, session_code, student_id)


@router.get("/{session_code}/heatmap", response_model=HeatmapResponse)
async def get_class_heatmap(
    session_code: str,
    mode_override: Optional[str] = Query(None, description="Pin a session mode instead of the recorded timeline"),
    feed: FeedSource = Depends(get_feed_source),
):
    override = _parse_mode_override(mode_override)
    try:
        return await compute_class_heatmap(feed, session_code, mode_override=override)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{session_code}/heatmap/seek", response_model=HeatmapSeekResponse)
async def seek_heatmap_cell(
    session_code: str,
    student: str = Query(..., min_length=1),
    time_ms: int = Query(...),
    mode_override: Optional[str] = Query(None),
    feed: FeedSource = Depends(get_feed_source),
):
    override = _parse_mode_override(mode_override)
    try:
        return await seek_offset(feed, session_code, student, time_ms, mode_override=override)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Student not in heatmap: {student}")
    except NoHeatmapData as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{session_code}/live/start", response_model=LiveStatusResponse)
async def start_live_heatmap(
    session_code: str,
    hub: LiveSessionHub = Depends(get_live_hub),
):
    context = await hub.start(session_code)
    return _live_status(hub, session_code, context)


@router.post("/{session_code}/live/stop", response_model=LiveStatusResponse)
async def stop_live_heatmap(
    session_code: str,
    hub: LiveSessionHub = Depends(get_live_hub),
):
    await hub.stop(session_code)
    context = hub.find(session_code)
    return _live_status(hub, session_code, context)


@router.get("/{session_code}/live", response_model=LiveStatusResponse)
async def get_live_heatmap(
    session_code: str,
    hub: LiveSessionHub = Depends(get_live_hub),
):
    context = hub.find(session_code)
    return _live_status(hub, session_code, context)


@router.put("/{session_code}/live/override", response_model=LiveStatusResponse)
async def set_live_mode_override(
    session_code: str,
    body: ModeOverrideRequest,
    hub: LiveSessionHub = Depends(get_live_hub),
):
    mode = SessionMode(body.mode) if body.mode else None
    context = await hub.set_mode_override(session_code, mode)
    return _live_status(hub, session_code, context)


@router.websocket("/{session_code}/heatmap/ws")
async def heatmap_updates_ws(
    websocket: WebSocket,
    session_code: str,
    hub: LiveSessionHub = Depends(get_live_hub),
):
    await websocket.accept()
    await hub.subscribe(session_code, websocket)
    try:
        context = hub.find(session_code)
        if context is not None and context.latest is not None:
            await websocket.send_json(
                {
                    "type": "heatmap_update" if context.latest["has_data"] else "no_data",
                    "heatmap": context.latest,
                }
            )
        while True:
            # Clients only listen; incoming text is ignored.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.unsubscribe(session_code, websocket)
