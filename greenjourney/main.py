from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from datetime import date, datetime
from functools import lru_cache
from typing import AsyncIterator, Iterator, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from greenjourney.errors import InvalidReviewError, InvalidTravelError, NotFoundError
from greenjourney.orchestrator import TravelSearch
from greenjourney.schemas import (
    CityReviewElement,
    Ranking,
    Review,
    ReviewInput,
    Travel,
    TravelDetails,
    TravelOptions,
    TravelUpdate,
    User,
    UserCreate,
)
from greenjourney.settings import get_settings
from greenjourney.store import InMemoryStore


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    if _default_search.cache_info().currsize:
        _default_search().close()
        _default_search.cache_clear()


app = FastAPI(title="Green Journey API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_store() -> InMemoryStore:
    return InMemoryStore()


@lru_cache(maxsize=1)
def _default_search() -> TravelSearch:
    return TravelSearch(get_store())


def get_travel_search() -> TravelSearch:
    return _default_search()


@contextmanager
def _domain_errors() -> Iterator[None]:
    """Translate repository errors into HTTP answers."""
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidTravelError, InvalidReviewError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# ------- travels -------
@app.get("/travels/search", response_model=TravelOptions)
async def search_travels(
    departure_id: int = Query(...),
    destination_id: int = Query(...),
    departure_date: date = Query(..., alias="date"),
    departure_time: str = Query(..., alias="time"),
    is_outward: bool = Query(True),
    store: InMemoryStore = Depends(get_store),
    search: TravelSearch = Depends(get_travel_search),
) -> TravelOptions:
    """Every option the providers offer for one direction of a trip."""
    try:
        clock = datetime.strptime(departure_time, "%H:%M").time()
    except ValueError as exc:
        raise HTTPException(status_code=422, detail="time must be formatted as HH:MM") from exc

    with _domain_errors():
        origin = store.get_place(departure_id)
        destination = store.get_place(destination_id)
    options = await search.search(origin, destination, datetime.combine(departure_date, clock), is_outward)
    return TravelOptions(options=options)


@app.get("/travels/user/{user_id}", response_model=List[TravelDetails])
def list_user_travels(user_id: int, store: InMemoryStore = Depends(get_store)) -> List[TravelDetails]:
    with _domain_errors():
        return store.list_travels(user_id)


@app.post("/travels/user", response_model=TravelDetails, status_code=201)
def create_travel(details: TravelDetails = Body(...), store: InMemoryStore = Depends(get_store)) -> TravelDetails:
    with _domain_errors():
        return store.create_travel(details)


@app.patch("/travels/user/{travel_id}", response_model=Travel)
def update_travel(
    travel_id: int,
    update: TravelUpdate = Body(...),
    store: InMemoryStore = Depends(get_store),
) -> Travel:
    with _domain_errors():
        return store.update_travel(travel_id, update)


@app.delete("/travels/user/{travel_id}", status_code=204)
def delete_travel(travel_id: int, store: InMemoryStore = Depends(get_store)) -> Response:
    with _domain_errors():
        store.delete_travel(travel_id)
    return Response(status_code=204)


# ------- users & ranking -------
@app.post("/users", response_model=User, status_code=201)
def create_user(data: UserCreate = Body(...), store: InMemoryStore = Depends(get_store)) -> User:
    return store.add_user(data)


@app.get("/users/{user_id}", response_model=User)
def get_user(user_id: int, store: InMemoryStore = Depends(get_store)) -> User:
    with _domain_errors():
        return store.get_user(user_id)


@app.get("/ranking/{user_id}", response_model=Ranking)
def get_ranking(user_id: int, store: InMemoryStore = Depends(get_store)) -> Ranking:
    with _domain_errors():
        return store.ranking(user_id)


# ------- reviews -------
@app.post("/reviews", response_model=Review, status_code=201)
def create_review(data: ReviewInput = Body(...), store: InMemoryStore = Depends(get_store)) -> Review:
    with _domain_errors():
        return store.create_review(data)


@app.put("/reviews/{review_id}", response_model=Review)
def update_review(
    review_id: int,
    data: ReviewInput = Body(...),
    store: InMemoryStore = Depends(get_store),
) -> Review:
    with _domain_errors():
        return store.update_review(review_id, data)


@app.delete("/reviews/{review_id}", status_code=204)
def delete_review(review_id: int, store: InMemoryStore = Depends(get_store)) -> Response:
    with _domain_errors():
        store.delete_review(review_id)
    return Response(status_code=204)


@app.get("/reviews/city/{city_id}", response_model=CityReviewElement)
def city_reviews(
    city_id: int,
    before_review_id: Optional[int] = Query(None),
    store: InMemoryStore = Depends(get_store),
) -> CityReviewElement:
    with _domain_errors():
        return store.city_reviews(city_id, before_review_id)


@app.get("/reviews/best", response_model=List[CityReviewElement])
def best_reviews(store: InMemoryStore = Depends(get_store)) -> List[CityReviewElement]:
    return store.best_cities()
