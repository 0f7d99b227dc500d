from campuslink.storage.models import AdminProfile, HostelInfo, StudentProfile, User

# Well-formed argon2id digest; the stores only check the prefix
ARGON_HASH = "$argon2id$v=19$m=65536,t=3,p=4$c2FsdHNhbHQ$aGFzaGhhc2g"


def make_student(**overrides) -> User:
    fields = dict(
        id="s-1",
        email="  Student@Campus.EDU ",
        first_name="Sam",
        last_name="Lee",
        profile=StudentProfile(
            student_id="CS2024001",
            department="Computer Science",
            year=2,
            hostel=HostelInfo(block="A", room_number="101"),
        ),
        password_hash=ARGON_HASH,
    )
    fields.update(overrides)
    return User(**fields)


def make_admin(**overrides) -> User:
    fields = dict(
        id="a-1",
        email="admin@x.edu",
        first_name="Ada",
        last_name="Admin",
        profile=AdminProfile(),
        password_hash=ARGON_HASH,
    )
    fields.update(overrides)
    return User(**fields)
