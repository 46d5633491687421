"""
Charter API Server - FastAPI Backend

Public reads:
- GET  /health                       Heartbeat
- GET  /foundation                   Hub status (governance, beacon, frozen, marshals)
- GET  /funds/{address}              Fund status
- GET  /funds/{address}/custody      Packed + split custody record for (user, asset)
- GET  /events                       Recent protocol events (audit trail)
- GET  /auth/message                 Message to sign for a session
- POST /auth                         Signed message -> bearer token

Authenticated (the signer is the caller; the protocol checks its rights):
- POST /marshals                        Grant / revoke a marshal      (governance)
- POST /freeze                          Toggle the global freeze      (governance)
- POST /funds                           Charter a fund                (marshal)
- POST /funds/{address}/contribute      own deposit -> owned          (any signed-in user)
- POST /funds/{address}/contribute-for  deposit for a user            (marshal)
- POST /funds/{address}/commit          owned -> escrow               (marshal)
- POST /funds/{address}/remit           escrow -> user, fee retained  (marshal)
- POST /funds/{address}/rescind         whole owned balance -> user   (depositor, works while frozen)

The app refuses to start without an API auth secret: session tokens
carry governance and marshal authority.

Handlers are async and never await mid-operation, so each protocol call
runs as one uninterrupted step on the event loop.
"""

import os
import logging
from typing import Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from charter.address import custody_key
from charter.custody import CustodyRecord
from charter.hub import Foundation
from charter.protocol import (
    AlreadyChartered,
    CustodyOverflow,
    DeadlineExpired,
    Frozen,
    InsufficientEscrow,
    InsufficientOwned,
    ProtocolError,
    ReentrantCall,
    TransferFailed,
    Unauthorized,
    UnknownFund,
)

from .auth import SessionSigner, create_auth_message, message_is_fresh, recover_sender

logger = logging.getLogger("charter.api")


# ============================================================
# MODELS
# ============================================================

class AuthRequest(BaseModel):
    message: str = Field(..., max_length=200)
    signature: str = Field(..., max_length=200)


class AuthResponse(BaseModel):
    token: str
    wallet: str
    expires_in: int


class MarshalRequest(BaseModel):
    marshal: str = Field(..., max_length=64)
    authorized: bool = True


class FreezeRequest(BaseModel):
    frozen: bool


class CharterRequest(BaseModel):
    owner: str = Field(..., max_length=64)
    salt: Optional[str] = Field(None, max_length=66)   # 0x-hex, default = owner salt


class CharterResponse(BaseModel):
    fund: str
    owner: str


class ContributeRequest(BaseModel):
    asset: str = Field(..., max_length=64)
    amount: int


class ContributeForRequest(BaseModel):
    user: str = Field(..., max_length=64)
    asset: str = Field(..., max_length=64)
    amount: int


class RescindRequest(BaseModel):
    asset: str = Field(..., max_length=64)


class CommitRequest(BaseModel):
    user: str = Field(..., max_length=64)
    asset: str = Field(..., max_length=64)
    amount: int
    fee: int = 0
    deadline: int = 0
    metadata: str = Field("", max_length=4096)          # 0x-hex


class RemitRequest(BaseModel):
    user: str = Field(..., max_length=64)
    asset: str = Field(..., max_length=64)
    amount: int
    fee: int = 0
    metadata: str = Field("", max_length=4096)


class CustodyResponse(BaseModel):
    key: str
    packed: str
    owned: int
    escrow: int


# ============================================================
# HELPERS
# ============================================================

_STATUS_BY_ERROR = [
    (Unauthorized, 403),
    (Frozen, 423),
    (UnknownFund, 404),
    (TransferFailed, 502),
    ((InsufficientOwned, InsufficientEscrow, CustodyOverflow,
      DeadlineExpired, AlreadyChartered, ReentrantCall), 409),
]


def _http_error(e: Exception) -> HTTPException:
    for error_types, status in _STATUS_BY_ERROR:
        if isinstance(e, error_types):
            return HTTPException(status_code=status, detail=f"{type(e).__name__}: {e}")
    if isinstance(e, ProtocolError):
        return HTTPException(status_code=400, detail=f"{type(e).__name__}: {e}")
    return HTTPException(status_code=400, detail=str(e))


def _hex_bytes(value: str) -> bytes:
    raw = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(raw)


def _caller(sessions: SessionSigner, authorization: Optional[str]) -> str:
    """The sender bound to the bearer token in the Authorization header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing auth token")
    session = sessions.open(authorization[len("Bearer "):])
    if session is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return session.sender


# ============================================================
# SERVER FACTORY
# ============================================================

def create_app(foundation: Foundation, auth_secret: str = "") -> FastAPI:
    """Create the FastAPI app wired to one Foundation hub. Raises ValueError without a usable secret."""
    secret = auth_secret or os.getenv("API_AUTH_SECRET", "")
    if not secret:
        raise ValueError("API_AUTH_SECRET is required to sign operator sessions")
    sessions = SessionSigner(secret)

    app = FastAPI(
        title="Charter Vault",
        description="Custodial escrow funds chartered at deterministic addresses",
        version="0.1.0",
    )

    cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================================
    # PUBLIC READS
    # ============================================================

    @app.get("/health")
    async def health():
        return {"ok": True, "frozen": foundation.marshal_frozen(), "events": len(foundation.events)}

    @app.get("/foundation")
    async def foundation_status():
        return foundation.get_status()

    @app.get("/funds/{address}")
    async def fund_status(address: str):
        try:
            return foundation.fund(address).get_status()
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)

    @app.get("/funds/{address}/custody", response_model=CustodyResponse)
    async def custody(address: str, user: str, asset: str):
        try:
            key = custody_key(user, asset)
            packed = foundation.fund(address).custody(key)
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)
        record = CustodyRecord.unpack(packed)
        return CustodyResponse(
            key="0x" + key.hex(),
            packed=hex(packed),
            owned=record.owned,
            escrow=record.escrow,
        )

    @app.get("/events")
    async def events(limit: int = 20):
        return {"events": foundation.events.recent(min(max(limit, 1), 500))}

    # ============================================================
    # AUTH
    # ============================================================

    @app.get("/auth/message")
    async def auth_message():
        return {"message": create_auth_message()}

    @app.post("/auth", response_model=AuthResponse)
    async def authenticate(req: AuthRequest):
        if not message_is_fresh(req.message):
            raise HTTPException(status_code=401, detail="Stale or malformed login message")
        sender = recover_sender(req.message, req.signature)
        if not sender:
            raise HTTPException(status_code=401, detail="Invalid signature")
        token, session = sessions.issue(sender)
        logger.info(f"Session opened for {session.sender[:10]}...")
        return AuthResponse(token=token, wallet=session.sender, expires_in=sessions.ttl_seconds)

    # ============================================================
    # GOVERNANCE
    # ============================================================

    @app.post("/marshals")
    async def set_marshal(req: MarshalRequest, authorization: Optional[str] = Header(None)):
        sender = _caller(sessions, authorization)
        try:
            foundation.set_marshal(sender, req.marshal, req.authorized)
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)
        return {"marshal": req.marshal, "authorized": foundation.is_marshal(req.marshal)}

    @app.post("/freeze")
    async def set_freeze(req: FreezeRequest, authorization: Optional[str] = Header(None)):
        sender = _caller(sessions, authorization)
        try:
            foundation.set_freeze(sender, req.frozen)
        except ProtocolError as e:
            raise _http_error(e)
        return {"frozen": foundation.marshal_frozen()}

    # ============================================================
    # DEPOSITS + WITHDRAWALS
    # ============================================================

    @app.post("/funds/{address}/contribute")
    async def contribute(address: str, req: ContributeRequest, authorization: Optional[str] = Header(None)):
        sender = _caller(sessions, authorization)
        try:
            record = foundation.fund(address).contribute(sender, req.asset, req.amount)
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)
        return record.to_dict()

    @app.post("/funds/{address}/contribute-for")
    async def contribute_for(address: str, req: ContributeForRequest, authorization: Optional[str] = Header(None)):
        sender = _caller(sessions, authorization)
        try:
            record = foundation.fund(address).contribute_for(sender, req.user, req.asset, req.amount)
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)
        return record.to_dict()

    @app.post("/funds/{address}/rescind")
    async def rescind(address: str, req: RescindRequest, authorization: Optional[str] = Header(None)):
        sender = _caller(sessions, authorization)
        try:
            fund = foundation.fund(address)
            amount = fund.request_rescission(sender, req.asset)
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)
        return {"rescinded": amount, **fund.record(sender, req.asset).to_dict()}

    # ============================================================
    # MARSHAL
    # ============================================================

    @app.post("/funds", response_model=CharterResponse)
    async def charter(req: CharterRequest, authorization: Optional[str] = Header(None)):
        sender = _caller(sessions, authorization)
        try:
            fund = foundation.charter_fund(sender, req.owner, req.salt)
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)
        return CharterResponse(fund=fund, owner=foundation.fund(fund).owner)

    @app.post("/funds/{address}/commit")
    async def commit(address: str, req: CommitRequest, authorization: Optional[str] = Header(None)):
        sender = _caller(sessions, authorization)
        try:
            record = foundation.commit(
                sender, address, req.user, req.asset, req.amount,
                req.fee, req.deadline, _hex_bytes(req.metadata),
            )
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)
        return record.to_dict()

    @app.post("/funds/{address}/remit")
    async def remit(address: str, req: RemitRequest, authorization: Optional[str] = Header(None)):
        sender = _caller(sessions, authorization)
        try:
            record = foundation.fund(address).remit(
                sender, req.user, req.asset, req.amount, req.fee, _hex_bytes(req.metadata),
            )
        except (ProtocolError, ValueError) as e:
            raise _http_error(e)
        return record.to_dict()

    return app
