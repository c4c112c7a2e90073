from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware

from analysis.cues import Pyttsx3Sink
from analysis.session import CycleResult, Session
from api.schemas import (
    CycleResponse,
    EventOut,
    ExerciseRequest,
    FrameRequest,
    SessionResponse,
    StartRequest,
)
from pose.backend import Keypoint, Pose, PoseSample


logger = logging.getLogger(__name__)


app = FastAPI(title="FormCue API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Live sessions only; nothing is kept once a session stops
@dataclass
class _Entry:
    session: Session
    lock: threading.Lock = field(default_factory=threading.Lock)


_SESSIONS: Dict[str, _Entry] = {}
_SESSIONS_LOCK = threading.Lock()

# One speaker per process, created on first use
_LOCAL_SINK: Optional[Pyttsx3Sink] = None


def _get_entry(session_id: str) -> _Entry:
    with _SESSIONS_LOCK:
        entry = _SESSIONS.get(session_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Unknown session")
    return entry


def _local_sink() -> Pyttsx3Sink:
    global _LOCAL_SINK
    with _SESSIONS_LOCK:
        if _LOCAL_SINK is None:
            try:
                _LOCAL_SINK = Pyttsx3Sink()
            except ImportError as exc:
                raise HTTPException(status_code=503, detail=str(exc)) from exc
        return _LOCAL_SINK


def _to_pose(req: FrameRequest) -> Optional[Pose]:
    if not req.keypoints:
        return None
    return Pose(tuple(Keypoint(x=k.x, y=k.y, confidence=k.score, name=k.name) for k in req.keypoints))


def _to_response(result: CycleResult) -> CycleResponse:
    event = None
    if result.event is not None:
        event = EventOut(kind=result.event.kind, index=result.event.index, was_correct=result.event.was_correct)
    return CycleResponse(
        exercise=result.exercise,
        form_correct=result.form_correct,
        cue=result.cue,
        status=result.status,
        event=event,
        speak=result.spoken,
        reps=result.reps,
        hold_seconds=result.hold_seconds,
        hold_current=result.hold_current,
        hold_best=result.hold_best,
    )


@app.get("/health")
def health() -> Dict[str, object]:
    with _SESSIONS_LOCK:
        count = len(_SESSIONS)
    return {"status": "ok", "sessions": count}


@app.post("/sessions", response_model=SessionResponse, status_code=201)
def start_session(req: StartRequest) -> SessionResponse:
    sink = _local_sink() if req.speak_locally else None
    session = Session(sink=sink, config=req.config)
    session.start(req.exercise)
    session_id = str(uuid.uuid4())
    with _SESSIONS_LOCK:
        _SESSIONS[session_id] = _Entry(session)
    logger.info("session %s started (%s)", session_id, req.exercise.value)
    return SessionResponse(session_id=session_id, exercise=req.exercise)


@app.put("/sessions/{session_id}/exercise", response_model=SessionResponse)
def set_exercise(session_id: str, req: ExerciseRequest) -> SessionResponse:
    entry = _get_entry(session_id)
    with entry.lock:
        if not entry.session.active:
            raise HTTPException(status_code=404, detail="Unknown session")
        entry.session.set_exercise(req.exercise)
    return SessionResponse(session_id=session_id, exercise=req.exercise)


@app.post("/sessions/{session_id}/frames", response_model=CycleResponse)
def submit_frame(session_id: str, req: FrameRequest) -> CycleResponse:
    entry = _get_entry(session_id)
    # one cycle at a time per session, even if the client posts concurrently
    with entry.lock:
        if not entry.session.active:
            raise HTTPException(status_code=404, detail="Unknown session")
        result = entry.session.process(PoseSample(_to_pose(req), req.timestamp))
    return _to_response(result)


@app.delete("/sessions/{session_id}", status_code=204)
def stop_session(session_id: str) -> Response:
    with _SESSIONS_LOCK:
        entry = _SESSIONS.pop(session_id, None)
    if entry is not None:
        with entry.lock:
            entry.session.stop()
        logger.info("session %s stopped", session_id)
    return Response(status_code=204)
