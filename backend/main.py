import logging
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

import auctions
from auth import (
    create_token,
    hash_password,
    oauth2_scheme,
    verify_password,
    verify_token,
)
from bidding import place_bid
from config import LOG_LEVEL
from database import AsyncSessionLocal, engine, get_db
from errors import AuctionError
from models import (
    AuctionCreate,
    AuctionDetail,
    AuctionOut,
    Base,
    BidCreate,
    BidResult,
    User,
    UserCreate,
    UserOut,
)
from sweeper import ClosingSweeper
from websocket import auction_ws

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s:%(levelname)s:%(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Auction Marketplace API")

sweeper = ClosingSweeper(AsyncSessionLocal)


@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sweeper.start()


@app.on_event("shutdown")
async def shutdown():
    await sweeper.stop()
    await engine.dispose()


@app.exception_handler(AuctionError)
async def auction_error_handler(request: Request, exc: AuctionError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
):
    payload = verify_token(token)

    result = await db.execute(select(User).where(User.id == payload["id"]))
    user = result.scalar()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


@app.post("/signup", status_code=201)
async def signup(user: UserCreate, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(User).where(
            or_(User.username == user.username, User.email == user.email)
        )
    )
    if result.scalar():
        raise HTTPException(status_code=400, detail="User already exists")

    new_user = User(
        username=user.username,
        email=user.email,
        password=hash_password(user.password),
    )

    db.add(new_user)
    await db.commit()

    logger.info("User %s signed up", new_user.id)
    return {"message": "User created", "id": new_user.id}


@app.post("/login")
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(User).where(
            or_(User.username == form_data.username, User.email == form_data.username)
        )
    )
    db_user = result.scalar()

    if not db_user or not verify_password(form_data.password, db_user.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_token({"id": db_user.id})

    return {
        "access_token": token,
        "token_type": "bearer"
    }


@app.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return UserOut.model_validate(current_user)


@app.get("/auctions", response_model=List[AuctionOut])
async def list_auctions(db: AsyncSession = Depends(get_db)):
    open_auctions = await auctions.list_open_auctions(db)
    return [AuctionOut.model_validate(a) for a in open_auctions]


@app.get("/auctions/{auction_id}", response_model=AuctionDetail)
async def get_auction(auction_id: int, db: AsyncSession = Depends(get_db)):
    auction = await auctions.get_auction(db, auction_id)
    return AuctionDetail.model_validate(auction)


@app.post("/auctions", response_model=AuctionDetail, status_code=201)
async def create_auction(
    auction: AuctionCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    new_auction = await auctions.create_auction(
        db,
        seller_id=current_user.id,
        item_name=auction.item_name,
        description=auction.description,
        starting_bid=auction.starting_bid,
        closing_time=auction.closing_time,
    )
    return AuctionDetail.model_validate(new_auction)


@app.put("/auctions/{auction_id}/bid", response_model=BidResult)
async def bid(
    auction_id: int,
    bid: BidCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await place_bid(
        db,
        auction_id=auction_id,
        bidder_id=current_user.id,
        amount=bid.amount,
    )


@app.get("/users/me/auctions", response_model=List[AuctionOut])
async def my_auctions(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    selling = await auctions.list_auctions_by_seller(db, current_user.id)
    return [AuctionOut.model_validate(a) for a in selling]


@app.get("/users/me/bids", response_model=List[AuctionOut])
async def my_bids(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    bidding_on = await auctions.list_auctions_with_bidder_participation(db, current_user.id)
    return [AuctionOut.model_validate(a) for a in bidding_on]


@app.websocket("/ws/{auction_id}")
async def ws(websocket: WebSocket, auction_id: int):
    await auction_ws(websocket, auction_id)
