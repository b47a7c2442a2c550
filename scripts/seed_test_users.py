#!/usr/bin/env python3
"""
Seed a demo tenant with an owner, a reviewer, a candidate and one open interview
"""
import asyncio
import uuid
from datetime import datetime, timezone

from interviewdesk.auth import hash_password
from interviewdesk.database import client, db

TENANT_ID = "tenant_demo00001"

TEST_USERS = [
    {"email": "owner@acme.com", "password": "owner123", "name": "Olivia Owner", "role": "owner"},
    {"email": "reviewer@acme.com", "password": "reviewer123", "name": "Ravi Reviewer", "role": "reviewer"},
    {"email": "candidate@example.com", "password": "candidate123", "name": "Casey Candidate", "role": "candidate"},
]


async def seed_users():
    """Seed test users"""
    now = datetime.now(timezone.utc).isoformat()

    existing_tenant = await db.tenants.find_one({"tenant_id": TENANT_ID})
    if not existing_tenant:
        await db.tenants.insert_one({
            "tenant_id": TENANT_ID,
            "name": "Acme Corporation",
            "subdomain": "acme",
            "custom_domain": None,
            "domain_verified": False,
            "logo_url": None,
            "theme": {"primary_color": "#1e3a8a"},
            "created_at": now
        })
        print("✓ Created tenant: Acme Corporation (acme)")
    else:
        print("✓ Tenant already exists")

    user_ids = {}
    for user_data in TEST_USERS:
        existing_user = await db.users.find_one({"email": user_data["email"]})
        if existing_user:
            user_ids[user_data["role"]] = existing_user["user_id"]
            print(f"✓ User {user_data['email']} already exists")
            continue

        is_employer = user_data["role"] != "candidate"
        user_id = f"user_{uuid.uuid4().hex[:12]}"
        await db.users.insert_one({
            "user_id": user_id,
            "email": user_data["email"],
            "name": user_data["name"],
            "password_hash": hash_password(user_data["password"]),
            "role": user_data["role"],
            "tenant_id": TENANT_ID if is_employer else None,
            "onboarding_completed": True,
            "created_at": now
        })
        if is_employer:
            await db.tenant_members.insert_one({
                "member_id": f"mem_{uuid.uuid4().hex[:12]}",
                "tenant_id": TENANT_ID,
                "user_id": user_id,
                "role": user_data["role"],
                "created_at": now
            })
        user_ids[user_data["role"]] = user_id
        print(f"✓ Created user: {user_data['email']} (role: {user_data['role']})")

    if not await db.interviews.find_one({"tenant_id": TENANT_ID}):
        interview_id = f"int_{uuid.uuid4().hex[:12]}"
        await db.interviews.insert_one({
            "interview_id": interview_id,
            "tenant_id": TENANT_ID,
            "title": "Frontend Engineer",
            "description": "Screening interview",
            "location": "Remote",
            "competencies": ["javascript", "communication"],
            "due_date": None,
            "status": "open",
            "brand": {},
            "created_by": user_ids.get("owner"),
            "created_at": now,
            "updated_at": now
        })
        for position, text in enumerate([
            "Tell us about a project you are proud of.",
            "How do you approach debugging a slow page?",
        ]):
            await db.questions.insert_one({
                "question_id": f"q_{uuid.uuid4().hex[:12]}",
                "interview_id": interview_id,
                "text": text,
                "ideal_answer": None,
                "time_limit_sec": 120,
                "position": position,
                "created_at": now,
                "updated_at": now
            })
        print("✓ Created interview: Frontend Engineer")

    print("\n" + "="*60)
    print("TEST CREDENTIALS")
    print("="*60)
    for user_data in TEST_USERS:
        print(f"\n{user_data['role'].title()}:")
        print(f"  Email: {user_data['email']}")
        print(f"  Password: {user_data['password']}")
    print("="*60)

    client.close()

if __name__ == "__main__":
    asyncio.run(seed_users())
