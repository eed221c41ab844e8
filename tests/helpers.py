from datetime import datetime, timedelta, timezone

from database import CONTESTS, USERS
from payments import CheckoutSession
from schemas import Contest, User


def fake_verify(token: str) -> dict:
    if not token.endswith("-token"):
        raise ValueError("Invalid token")
    uid = token[: -len("-token")]
    return {"uid": uid, "email": f"{uid}@example.com"}


class FakeGateway:
    def __init__(self):
        self.calls = []

    def create_checkout_session(self, contest, uid, email):
        self.calls.append({"contest_id": str(contest["_id"]), "uid": uid, "email": email})
        return CheckoutSession("cs_test_123", "https://checkout.stripe.test/cs_test_123")


def auth_header(uid: str) -> dict:
    return {"Authorization": f"Bearer {uid}-token"}


def add_user(db, uid: str, role: str = "user", **fields) -> str:
    fields.setdefault("display_name", uid)
    user = User(uid=uid, email=f"{uid}@example.com", role=role, **fields)
    return str(db[USERS].insert_one(user.model_dump(by_alias=True)).inserted_id)


def add_contest(db, creator_uid: str = "c1", **fields) -> str:
    data = {
        "name": "Logo Sprint",
        "category": "Design",
        "price": 10,
        "prize_money": 100,
        "deadline": datetime.now(timezone.utc) + timedelta(days=7),
        "creator_uid": creator_uid,
        "creator_email": f"{creator_uid}@example.com",
    }
    data.update(fields)
    contest = Contest(**data)
    return str(db[CONTESTS].insert_one(contest.model_dump(by_alias=True)).inserted_id)
