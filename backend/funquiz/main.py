from functools import lru_cache
from typing import List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .errors import InvalidArgumentError, InvalidOperationError, NotFoundError, QuestionGenerationError
from .game import GameController, build_controller
from .logging_config import configure_logging
from .models import QUESTION_CATEGORIES, GameRecord, GameResult, LeaderboardEntry
from .schemas import AnswerIn, AnswerOut, CreateGameIn, EventsOut, GameOut, PlayerOut

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

app = FastAPI(title="FunQuiz API")

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
origin_regex = settings.CORS_ORIGIN_REGEX or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_controller() -> GameController:
    return build_controller(settings)


@app.post("/api/games", response_model=GameOut, status_code=201)
async def create_game(payload: CreateGameIn, controller: GameController = Depends(get_controller)):
    try:
        session = await controller.create_game(payload.player1_initials, payload.player2_initials, payload.category)
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except QuestionGenerationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return GameOut.from_session(session)


@app.get("/api/games", response_model=List[GameRecord])
async def recent_games(
    initials: Optional[str] = None,
    count: int = 10,
    controller: GameController = Depends(get_controller),
):
    try:
        return await controller.recent_games(initials, count)
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/games/{game_id}", response_model=Union[GameOut, GameRecord])
async def get_game(game_id: str, controller: GameController = Depends(get_controller)):
    session = controller.find_session(game_id)
    if session is not None:
        return GameOut.from_session(session)
    try:
        return await controller.get_record(game_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/games/{game_id}/answers", response_model=AnswerOut)
async def submit_answer(game_id: str, payload: AnswerIn, controller: GameController = Depends(get_controller)):
    try:
        record = await controller.submit_answer(
            game_id,
            payload.player_slot,
            payload.question_id,
            payload.option_index,
            payload.response_time_ms,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InvalidOperationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return AnswerOut(answer=record, game_complete=controller.get_session(game_id).is_complete())


@app.post("/api/games/{game_id}/finish", response_model=GameResult)
async def finish_game(game_id: str, controller: GameController = Depends(get_controller)):
    try:
        return await controller.finish_game(game_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidOperationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/api/games/{game_id}/events", response_model=EventsOut)
async def list_events(
    game_id: str,
    after: int | None = None,
    limit: int = 200,
    controller: GameController = Depends(get_controller),
):
    events = await controller.events.list(game_id, after=after, limit=limit)
    latest_seq = events[-1]["seq"] if events else after
    return {"events": events, "latest_seq": latest_seq}


@app.get("/api/categories", response_model=List[str])
async def categories():
    return QUESTION_CATEGORIES


@app.get("/api/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(
    category: Optional[str] = None,
    count: int = 10,
    controller: GameController = Depends(get_controller),
):
    try:
        return await controller.leaderboard(category, count)
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/players/top", response_model=List[PlayerOut])
async def top_players(count: int = 10, controller: GameController = Depends(get_controller)):
    players = await controller.top_players(count)
    return [PlayerOut.from_player(p, rank=i + 1) for i, p in enumerate(players)]


@app.get("/api/players/{initials}", response_model=PlayerOut)
async def get_player(initials: str, controller: GameController = Depends(get_controller)):
    try:
        player = await controller.get_player(initials)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PlayerOut.from_player(player)
