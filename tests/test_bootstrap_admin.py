from campuslink.service.auth import Registration
from campuslink.service.runtime import get_runtime
from campuslink.storage.models import HostelInfo
from scripts.bootstrap_admin import bootstrap_admin, validate_password


def test_password_bounds():
    assert not validate_password("12345")
    assert validate_password("123456")
    assert not validate_password("x" * 129)


async def test_creates_admin():
    result = await bootstrap_admin("dean@campus.edu", "Secret123", "Ada", "Lovelace")
    assert result["status"] == "created"
    user = get_runtime().store.get_user(result["user_id"])
    assert user.is_admin
    assert user.bio == "Administrator at the university"


async def test_dry_run_writes_nothing():
    result = await bootstrap_admin("dean@campus.edu", "Secret123", "Ada", "L", dry_run=True)
    assert result == {"user_id": None, "email": "dean@campus.edu", "status": "dry_run"}
    assert get_runtime().store.get_user_by_email("dean@campus.edu") is None


async def test_promotes_existing_student_then_reports_already_admin():
    registered = await get_runtime().auth.register(
        Registration(
            email="ta@campus.edu",
            password="Secret123",
            first_name="Tea",
            last_name="Assistant",
            student_id="PH2021007",
            department="Physics",
            year=4,
            hostel=HostelInfo(block="D", room_number="7"),
        )
    )
    promoted = await bootstrap_admin("ta@campus.edu", "ignored", "Tea", "Assistant")
    assert promoted["status"] == "promoted"
    user = get_runtime().store.get_user(registered.user.id)
    assert user.role == "admin"
    assert user.department == "Physics"
    assert user.public_dict()["studentId"] is None

    again = await bootstrap_admin("ta@campus.edu", "ignored", "Tea", "Assistant")
    assert again["status"] == "already_admin"
