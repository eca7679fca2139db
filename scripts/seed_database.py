#!/usr/bin/env python3
"""
Database Seeder for the Disaster Training Platform

Populates the database with a SuperAdmin, state Admins, ATI/NGO organizers,
volunteers and trainings spread across states, themes and dates.

Usage:
    # From project root with venv activated:
    python scripts/seed_database.py

    # With options:
    python scripts/seed_database.py --trainings 80 --volunteers 40 --clear

Seeded accounts share the password given by --password (default Password123).
"""
import argparse
import asyncio
import os
import random
import sys
from datetime import timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import delete  # noqa: E402

from disaster_training.database import async_session_maker, init_db, close_db  # noqa: E402
from disaster_training.models.database_models import (  # noqa: E402
    Training, TrainingFeedback, TrainingRegistration, User, utcnow,
)
from disaster_training.models.roles import (  # noqa: E402
    ApprovalStatus, RegistrationStatus, Role, TrainingStatus,
    TARGET_AUDIENCES, TRAINING_THEMES, TRAINING_TYPES,
)
from disaster_training.security import hash_password  # noqa: E402

# Configuration
DEFAULT_NUM_TRAININGS = 60
DEFAULT_NUM_VOLUNTEERS = 30
DEFAULT_PASSWORD = "Password123"

# State -> (district, longitude, latitude)
STATE_LOCATIONS = {
    "Delhi": ("New Delhi", 77.2090, 28.6139),
    "Gujarat": ("Ahmedabad", 72.5714, 23.0225),
    "Maharashtra": ("Mumbai", 72.8777, 19.0760),
    "Karnataka": ("Bengaluru", 77.5946, 12.9716),
    "Kerala": ("Thiruvananthapuram", 76.9366, 8.5241),
    "Odisha": ("Bhubaneswar", 85.8245, 20.2961),
    "Assam": ("Guwahati", 91.7362, 26.1445),
    "Punjab": ("Ludhiana", 75.8573, 30.9010),
    "Tamil Nadu": ("Chennai", 80.2707, 13.0827),
    "West Bengal": ("Kolkata", 88.3639, 22.5726),
}

FIRST_NAMES = [
    "Aarav", "Priya", "Rohan", "Ananya", "Vikram", "Meera", "Arjun", "Kavya",
    "Rahul", "Sneha", "Karan", "Divya", "Amit", "Pooja", "Sanjay", "Neha",
]
LAST_NAMES = ["Sharma", "Patel", "Reddy", "Nair", "Singh", "Das", "Iyer", "Gupta", "Khan", "Bose"]

INSTITUTIONS = [
    "National Institute of Disaster Management",
    "State Disaster Management Authority",
    "Administrative Training Institute",
    "Civil Defence Training Centre",
    "Red Cross Society",
]


def random_name() -> str:
    return f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}"


def make_user(name: str, email: str, role: Role, password_hash: str, state=None, organization=None) -> User:
    user = User.create_with_role(
        name=name,
        email=email,
        password_hash=password_hash,
        role=role.value,
        state=state,
        organization=organization,
    )
    user.is_approved = True
    return user


def make_training(organizer: User, state: str, index: int) -> Training:
    district, lon, lat = STATE_LOCATIONS[state]
    date = utcnow() + timedelta(days=random.randint(-180, 60), hours=random.randint(8, 16))
    planned = random.randint(20, 200)
    actual = random.randint(0, planned) if date < utcnow() else 0
    male = random.randint(0, actual)

    if date < utcnow():
        status = random.choice([TrainingStatus.COMPLETED, TrainingStatus.COMPLETED, TrainingStatus.CANCELLED])
    else:
        status = TrainingStatus.SCHEDULED

    theme = random.choice(TRAINING_THEMES)
    training = Training(
        title=f"{theme} {random.choice(TRAINING_TYPES)} #{index}",
        description=f"{theme} training for {district}, {state}.",
        date=date,
        end_date=date + timedelta(hours=6),
        theme=theme,
        state=state,
        district=district,
        trainer_name=random_name(),
        trainer_qualification="Certified Disaster Management Trainer",
        trainer_organization=random.choice(INSTITUTIONS),
        institution=random.choice(INSTITUTIONS),
        participants_planned=planned,
        participants_actual=actual,
        participants_male=male,
        participants_female=actual - male,
        duration_hours=random.choice([2, 4, 6, 8, 16]),
        duration_days=random.randint(1, 3),
        longitude=round(lon + random.uniform(-0.2, 0.2), 5),
        latitude=round(lat + random.uniform(-0.2, 0.2), 5),
        location_name=f"{district} Training Hall",
        location_address=f"{random.randint(1, 200)} Main Road, {district}",
        training_type=random.choice(TRAINING_TYPES),
        target_audience=random.choice(TARGET_AUDIENCES),
        status=status.value,
        resources=[],
        tags=[theme.split(" ")[0].lower(), state.lower()],
        max_participants=planned + random.randint(0, 50),
        registration_deadline=date - timedelta(days=1),
        is_public=True,
        registration_count=0,
    )
    training.organizer_id = organizer.id
    training.approval_status = Training.initial_approval_status(organizer.role)
    if training.approval_status == ApprovalStatus.PENDING.value and random.random() < 0.6:
        training.approval_status = ApprovalStatus.APPROVED.value
    if training.approval_status != ApprovalStatus.PENDING.value:
        training.approved_by_id = organizer.id
        training.approval_date = utcnow()
    return training


async def seed_database(num_trainings: int, num_volunteers: int, password: str, clear_existing: bool):
    print("=" * 60)
    print("Disaster Training Platform database seeder")
    print("=" * 60)

    await init_db()
    password_hash = hash_password(password)

    async with async_session_maker() as db:
        try:
            if clear_existing:
                print("\nClearing existing data...")
                for model in (TrainingFeedback, TrainingRegistration, Training, User):
                    await db.execute(delete(model))
                await db.commit()

            # 1. Users
            print("\n1. Seeding users...")
            super_admin = make_user("Super Admin", "superadmin@ndma.gov.in", Role.SUPER_ADMIN, password_hash,
                                    organization="NDMA")
            db.add(super_admin)

            organizers = []
            for state in STATE_LOCATIONS:
                slug = state.lower().replace(" ", "")
                db.add(make_user(f"{state} Admin", f"admin.{slug}@sdma.gov.in", Role.ADMIN, password_hash,
                                 state=state, organization=f"{state} SDMA"))
                ati = make_user(random_name(), f"ati.{slug}@ati.gov.in", Role.ATI, password_hash,
                                state=state, organization=f"{state} ATI")
                ngo = make_user(random_name(), f"ngo.{slug}@example.org", Role.NGO, password_hash,
                                state=state, organization=f"{state} Relief Trust")
                db.add_all([ati, ngo])
                organizers.extend([ati, ngo])

            volunteers = []
            for i in range(num_volunteers):
                volunteer = make_user(random_name(), f"volunteer{i + 1}@example.org", Role.VOLUNTEER, password_hash,
                                      state=random.choice(list(STATE_LOCATIONS)))
                volunteers.append(volunteer)
            db.add_all(volunteers)
            await db.commit()
            print(f"  Created {1 + len(STATE_LOCATIONS) * 3 + num_volunteers} users")

            # 2. Trainings
            print("\n2. Seeding trainings...")
            trainings = []
            for i in range(num_trainings):
                organizer = random.choice(organizers + [super_admin])
                state = organizer.state if organizer.state in STATE_LOCATIONS else random.choice(list(STATE_LOCATIONS))
                trainings.append(make_training(organizer, state, i + 1))
            db.add_all(trainings)
            await db.commit()
            print(f"  Created {num_trainings} trainings")

            # 3. Registrations and feedback
            print("\n3. Seeding registrations and feedback...")
            registration_count = 0
            feedback_count = 0
            for training in trainings:
                if training.approval_status == ApprovalStatus.PENDING.value:
                    continue
                seats = min(training.max_participants, len(volunteers))
                for volunteer in random.sample(volunteers, random.randint(0, min(seats, 10))):
                    completed = training.status == TrainingStatus.COMPLETED.value
                    db.add(TrainingRegistration(
                        training_id=training.id,
                        user_id=volunteer.id,
                        registered_at=training.date - timedelta(days=random.randint(2, 20)),
                        status=(RegistrationStatus.ATTENDED if completed else RegistrationStatus.REGISTERED).value,
                        present=completed,
                        check_in=training.date if completed else None,
                    ))
                    training.registration_count += 1
                    registration_count += 1
                    if completed and random.random() < 0.5:
                        db.add(TrainingFeedback(
                            training_id=training.id,
                            user_id=volunteer.id,
                            rating=random.randint(3, 5),
                            comment="Very informative session.",
                        ))
                        feedback_count += 1
            await db.commit()
            print(f"  Created {registration_count} registrations, {feedback_count} feedback entries")

        except Exception as e:
            await db.rollback()
            print(f"\n❌ Error during seeding: {e}")
            raise

    await close_db()
    print("\n" + "=" * 60)
    print("✅ Database seeding complete!")
    print("=" * 60)
    print(f"\nAll seeded accounts use the password: {password}")


def main():
    parser = argparse.ArgumentParser(
        description="Seed the Disaster Training Platform database"
    )
    parser.add_argument(
        "--trainings", "-t",
        type=int,
        default=DEFAULT_NUM_TRAININGS,
        help=f"Number of trainings (default: {DEFAULT_NUM_TRAININGS})"
    )
    parser.add_argument(
        "--volunteers", "-v",
        type=int,
        default=DEFAULT_NUM_VOLUNTEERS,
        help=f"Number of volunteers (default: {DEFAULT_NUM_VOLUNTEERS})"
    )
    parser.add_argument(
        "--password", "-p",
        default=DEFAULT_PASSWORD,
        help="Password for every seeded account"
    )
    parser.add_argument(
        "--clear", "-c",
        action="store_true",
        help="Clear existing data before seeding"
    )

    args = parser.parse_args()

    asyncio.run(seed_database(
        num_trainings=args.trainings,
        num_volunteers=args.volunteers,
        password=args.password,
        clear_existing=args.clear
    ))


if __name__ == "__main__":
    main()
