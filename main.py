import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import stripe
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from auth import Principal, get_current_user, require_role, require_self
from config import get_settings
from database import (
    CONTESTS,
    PAYMENTS,
    SUBMISSIONS,
    USERS,
    as_utc,
    create_document,
    ensure_indexes,
    get_db,
    get_documents,
    parse_object_id,
    to_str_id,
)
from logging_config import configure_logging
from payments import StripeGateway, get_payment_gateway
from schemas import (
    MODERATION_ACTIONS,
    ROLES,
    CheckoutRequest,
    Contest,
    ContestCreate,
    ContestUpdate,
    CreatorSubmissionsQuery,
    ModerationRequest,
    Payment,
    PaymentRecord,
    ProfileUpdate,
    RoleChange,
    Submission,
    SubmissionCreate,
    User,
    UserLogin,
    Winner,
    WinnerDeclaration,
)

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(get_db())
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
async def database_error_handler(request, exc: PyMongoError):
    logger.error("database error", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"detail": "Database error"})


# Utilities

PUBLIC_USER_FIELDS = {"uid": 1, "email": 1, "displayName": 1, "photoUrl": 1, "role": 1, "createdAt": 1}


def contest_oid(contest_id: str):
    oid = parse_object_id(contest_id)
    if oid is None:
        raise HTTPException(400, detail="Invalid contest id")
    return oid


def load_contest(db: Database, contest_id: str) -> dict:
    contest = db[CONTESTS].find_one({"_id": contest_oid(contest_id)})
    if not contest:
        raise HTTPException(404, detail="Contest not found")
    return contest


def load_owned_pending_contest(db: Database, contest_id: str, principal: Principal) -> dict:
    contest = db[CONTESTS].find_one({"_id": contest_oid(contest_id)})
    if not contest or contest.get("creatorUid") != principal.uid or contest.get("status") != "pending":
        raise HTTPException(403, detail="Only the creator can modify a pending contest")
    return contest


@app.get("/")
def read_root():
    return "A place for your contests"


@app.get("/health")
def health(db: Database = Depends(get_db)):
    try:
        db.command("ping")
        database = True
    except PyMongoError:
        database = False
    return {"ok": True, "database": database}


# Users

@app.post("/users")
def register_or_login(payload: UserLogin, db: Database = Depends(get_db)):
    user = User(
        uid=payload.uid,
        email=payload.email,
        display_name=payload.display_name or "",
        photo_url=payload.photo_url or "",
        address=payload.address,
    )
    doc = db[USERS].find_one_and_update(
        {"uid": payload.uid},
        {"$setOnInsert": user.model_dump(by_alias=True)},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return {"success": True, "role": doc.get("role", "user")}


@app.get("/user/{uid}")
def get_user(uid: str, principal: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    require_self(uid, principal)
    user = db[USERS].find_one({"uid": uid})
    if not user:
        raise HTTPException(404, detail="User not found")
    return to_str_id(user)


@app.patch("/user/{uid}")
def update_profile(
    uid: str,
    payload: ProfileUpdate,
    principal: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    require_self(uid, principal)
    changes = payload.model_dump(by_alias=True, exclude_unset=True)
    if not changes:
        raise HTTPException(400, detail="Nothing to update")
    user = db[USERS].find_one_and_update(
        {"uid": uid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not user:
        raise HTTPException(404, detail="User not found")
    return to_str_id(user)


@app.get("/admin/users")
def list_users(principal: Principal = Depends(require_role("admin")), db: Database = Depends(get_db)):
    users = db[USERS].find({}, PUBLIC_USER_FIELDS).sort("createdAt", DESCENDING)
    return [to_str_id(u) for u in users]


@app.patch("/admin/users/{user_id}/role")
def change_role(
    user_id: str,
    payload: RoleChange,
    principal: Principal = Depends(require_role("admin")),
    db: Database = Depends(get_db),
):
    if payload.role not in ROLES:
        raise HTTPException(400, detail="Invalid role")
    oid = parse_object_id(user_id)
    if oid is None:
        raise HTTPException(400, detail="Invalid user id")
    result = db[USERS].update_one({"_id": oid}, {"$set": {"role": payload.role}})
    if result.matched_count == 0:
        raise HTTPException(404, detail="User not found")
    logger.info("role changed", extra={"user_id": user_id, "role": payload.role, "by": principal.uid})
    return {"success": True}


# Public contests

@app.get("/contests")
def list_contests(limit: Optional[int] = Query(default=None, ge=1), db: Database = Depends(get_db)):
    docs = get_documents(db, CONTESTS, {"status": "approved"}, sort=[("participants", DESCENDING)], limit=limit or 0)
    return [to_str_id(d) for d in docs]


@app.get("/contests/search")
def search_contests(category: Optional[str] = None, db: Database = Depends(get_db)):
    # No category means no results, never the whole catalogue
    if not category or not category.strip():
        return []
    pattern = f"^{re.escape(category.strip())}$"
    docs = get_documents(
        db,
        CONTESTS,
        {"status": "approved", "category": {"$regex": pattern, "$options": "i"}},
        sort=[("participants", DESCENDING)],
    )
    return [to_str_id(d) for d in docs]


@app.get("/contest/{contest_id}")
def get_contest(contest_id: str, db: Database = Depends(get_db)):
    return to_str_id(load_contest(db, contest_id))


@app.get("/recent-winners")
def recent_winners(db: Database = Depends(get_db)):
    docs = get_documents(db, CONTESTS, {"winner": {"$exists": True}}, sort=[("winner.declaredAt", DESCENDING)], limit=3)
    return [to_str_id(d) for d in docs]


@app.get("/leaderboard")
def leaderboard(db: Database = Depends(get_db)):
    pipeline = [
        {"$match": {"status": "approved", "winner.uid": {"$exists": True}}},
        {"$group": {"_id": "$winner.uid", "wins": {"$sum": 1}, "totalPrize": {"$sum": "$winner.prize"}}},
        {"$lookup": {"from": USERS, "localField": "_id", "foreignField": "uid", "as": "user"}},
        {"$unwind": "$user"},
        {
            "$project": {
                "_id": 0,
                "uid": "$_id",
                "email": "$user.email",
                "displayName": "$user.displayName",
                "photoUrl": "$user.photoUrl",
                "wins": 1,
                "totalPrize": 1,
            }
        },
        {"$sort": {"wins": -1, "totalPrize": -1}},
    ]
    return list(db[CONTESTS].aggregate(pipeline))


# Creator contests

@app.post("/contests")
def create_contest(
    payload: ContestCreate,
    principal: Principal = Depends(require_role("creator")),
    db: Database = Depends(get_db),
):
    # status, participants and createdAt are never taken from the caller
    contest = Contest(**payload.model_dump(), creator_uid=principal.uid, creator_email=principal.email)
    contest_id = create_document(db, CONTESTS, contest)
    logger.info("contest created", extra={"contest_id": contest_id, "creator": principal.uid})
    return to_str_id(db[CONTESTS].find_one({"_id": contest_oid(contest_id)}))


@app.get("/creator/contests")
def my_created_contests(principal: Principal = Depends(require_role("creator")), db: Database = Depends(get_db)):
    docs = get_documents(db, CONTESTS, {"creatorUid": principal.uid}, sort=[("createdAt", DESCENDING)])
    return [to_str_id(d) for d in docs]


@app.patch("/contests/{contest_id}")
def update_contest(
    contest_id: str,
    payload: ContestUpdate,
    principal: Principal = Depends(require_role("creator")),
    db: Database = Depends(get_db),
):
    contest = load_owned_pending_contest(db, contest_id, principal)
    changes = payload.model_dump(by_alias=True, exclude_unset=True)
    if not changes:
        raise HTTPException(400, detail="Nothing to update")
    if any(value is None for value in changes.values()):
        raise HTTPException(400, detail="Contest fields cannot be null")
    # status guard repeated in the filter so a concurrent approval wins
    updated = db[CONTESTS].find_one_and_update(
        {"_id": contest["_id"], "status": "pending"},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(403, detail="Only the creator can modify a pending contest")
    return to_str_id(updated)


@app.delete("/contests/{contest_id}")
def delete_contest(
    contest_id: str,
    principal: Principal = Depends(require_role("creator")),
    db: Database = Depends(get_db),
):
    contest = load_owned_pending_contest(db, contest_id, principal)
    result = db[CONTESTS].delete_one({"_id": contest["_id"], "status": "pending"})
    if result.deleted_count == 0:
        raise HTTPException(403, detail="Only the creator can modify a pending contest")
    logger.info("contest deleted", extra={"contest_id": contest_id, "by": principal.uid})
    return {"success": True}


@app.patch("/contests/{contest_id}/winner")
def declare_winner(
    contest_id: str,
    payload: WinnerDeclaration,
    principal: Principal = Depends(require_role("creator")),
    db: Database = Depends(get_db),
):
    contest = db[CONTESTS].find_one({"_id": contest_oid(contest_id)})
    if not contest or contest.get("creatorUid") != principal.uid:
        raise HTTPException(403, detail="Only the contest creator can declare a winner")
    if contest.get("winner"):
        raise HTTPException(400, detail="Winner already declared")
    if contest.get("status") != "approved":
        raise HTTPException(400, detail="Contest is not approved")

    entry = db[SUBMISSIONS].find_one({"contestId": contest_id, "uid": payload.winner_uid})
    if not entry:
        raise HTTPException(400, detail="Winner has no submission for this contest")

    winner = Winner(
        uid=payload.winner_uid,
        name=entry.get("name", ""),
        email=entry.get("email"),
        photo_url=entry.get("photoUrl", ""),
        prize=contest.get("prizeMoney", 0),
    )
    # at most once: the filter only matches while no winner is stored
    result = db[CONTESTS].update_one(
        {"_id": contest["_id"], "winner": {"$exists": False}},
        {"$set": {"winner": winner.model_dump(by_alias=True)}},
    )
    if result.modified_count == 0:
        raise HTTPException(400, detail="Winner already declared")
    logger.info("winner declared", extra={"contest_id": contest_id, "winner": payload.winner_uid})
    return {"success": True}


@app.post("/creator/submissions")
def creator_submissions(
    payload: CreatorSubmissionsQuery,
    principal: Principal = Depends(require_role("creator")),
    db: Database = Depends(get_db),
):
    # The ids are trusted as the caller's own contests; ownership is not re-checked
    if not payload.contest_ids:
        return []
    docs = get_documents(db, SUBMISSIONS, {"contestId": {"$in": payload.contest_ids}}, sort=[("submittedAt", DESCENDING)])
    return [to_str_id(d) for d in docs]


# Admin contests

@app.get("/admin/contests")
def admin_contests(principal: Principal = Depends(require_role("admin")), db: Database = Depends(get_db)):
    docs = get_documents(db, CONTESTS, {}, sort=[("createdAt", DESCENDING)])
    return [to_str_id(d) for d in docs]


@app.patch("/admin/contests/{contest_id}")
def moderate_contest(
    contest_id: str,
    payload: ModerationRequest,
    principal: Principal = Depends(require_role("admin")),
    db: Database = Depends(get_db),
):
    if payload.action not in MODERATION_ACTIONS:
        raise HTTPException(400, detail="Invalid action")
    oid = contest_oid(contest_id)

    if payload.action == "delete":
        result = db[CONTESTS].delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise HTTPException(404, detail="Contest not found")
    else:
        status = "approved" if payload.action == "approve" else "rejected"
        # only pending contests move; approved and rejected are final
        result = db[CONTESTS].update_one({"_id": oid, "status": "pending"}, {"$set": {"status": status}})
        if result.matched_count == 0:
            if not db[CONTESTS].find_one({"_id": oid}, {"_id": 1}):
                raise HTTPException(404, detail="Contest not found")
            raise HTTPException(400, detail="Contest already moderated")

    logger.info("contest moderated", extra={"contest_id": contest_id, "action": payload.action, "by": principal.uid})
    return {"success": True}


# Submissions

@app.post("/submissions")
def submit_task(
    payload: SubmissionCreate,
    principal: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    key = {"uid": principal.uid, "contestId": payload.contest_id}
    if not db[PAYMENTS].find_one(key):
        raise HTTPException(403, detail="You must pay to submit")
    if db[SUBMISSIONS].find_one(key):
        raise HTTPException(400, detail="Already submitted")

    profile = db[USERS].find_one({"uid": principal.uid}) or {}
    submission = Submission(
        contest_id=payload.contest_id,
        uid=principal.uid,
        email=principal.email,
        name=payload.name or profile.get("displayName", ""),
        photo_url=payload.photo_url or profile.get("photoUrl", ""),
        task=payload.task,
    )
    try:
        submission_id = create_document(db, SUBMISSIONS, submission)
    except DuplicateKeyError:
        raise HTTPException(400, detail="Already submitted")
    return {"success": True, "id": submission_id}


@app.get("/check-submission/{uid}/{contest_id}")
def check_submission(
    uid: str,
    contest_id: str,
    principal: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    require_self(uid, principal)
    exists = db[SUBMISSIONS].find_one({"uid": uid, "contestId": contest_id}) is not None
    return {"submitted": exists}


# Payments

@app.post("/save-payment")
def save_payment(
    payload: PaymentRecord,
    principal: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    oid = contest_oid(payload.contest_id)
    key = {"uid": principal.uid, "contestId": payload.contest_id}
    if db[PAYMENTS].find_one(key):
        return {"success": True, "alreadyPaid": True}
    if not db[CONTESTS].find_one({"_id": oid}, {"_id": 1}):
        raise HTTPException(404, detail="Contest not found")

    payment = Payment(
        uid=principal.uid,
        email=principal.email,
        contest_id=payload.contest_id,
        transaction_id=payload.transaction_id,
    )
    try:
        create_document(db, PAYMENTS, payment)
    except DuplicateKeyError:
        # a concurrent request recorded it first and owns the increment
        return {"success": True, "alreadyPaid": True}

    # TODO: fold into a transaction once deployments run on a replica set
    db[CONTESTS].update_one({"_id": oid}, {"$inc": {"participants": 1}})
    logger.info("payment recorded", extra={"contest_id": payload.contest_id, "uid": principal.uid})
    return {"success": True, "alreadyPaid": False}


@app.get("/check-payment/{uid}/{contest_id}")
def check_payment(
    uid: str,
    contest_id: str,
    principal: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    require_self(uid, principal)
    exists = db[PAYMENTS].find_one({"uid": uid, "contestId": contest_id}) is not None
    return {"paid": exists}


@app.get("/my-participated")
def my_participated(principal: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    payments = db[PAYMENTS].find({"uid": principal.uid}, {"contestId": 1})
    ids = [oid for oid in (parse_object_id(p["contestId"]) for p in payments) if oid is not None]
    if not ids:
        return []
    docs = get_documents(db, CONTESTS, {"_id": {"$in": ids}}, sort=[("deadline", ASCENDING)])
    return [to_str_id(d) for d in docs]


@app.post("/create-checkout-session")
def create_checkout_session(
    payload: CheckoutRequest,
    principal: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    contest = load_contest(db, payload.contest_id)
    if contest.get("status") != "approved":
        raise HTTPException(400, detail="Contest is not open for entries")
    deadline = contest.get("deadline")
    if deadline is None or as_utc(deadline) <= datetime.now(timezone.utc):
        raise HTTPException(400, detail="Contest deadline has passed")

    try:
        session = gateway.create_checkout_session(contest, principal.uid, principal.email)
    except stripe.StripeError:
        logger.exception("checkout session failed", extra={"contest_id": payload.contest_id})
        raise HTTPException(500, detail="Payment provider error")
    return {"id": session.id, "url": session.url}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
