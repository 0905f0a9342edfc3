# app/seed.py
from __future__ import annotations

from typing import List

from Domain.models import IdentityProfile, IdentityRecord

# A handful of scripted identities for local runs of the console app.
SEED_PROFILES = [
    {
        "id": "companion-emma",
        "name": "Emma Wilson",
        "personality": "friendly",
        "bio": "Adventure seeker and coffee enthusiast. Love hiking, photography, and trying new restaurants.",
        "interests": ["Hiking", "Photography", "Coffee", "Travel", "Cooking"],
        "occupation": "Marketing Manager",
        "location": "New York",
    },
    {
        "id": "companion-sophia",
        "name": "Sophia Chen",
        "personality": "intellectual",
        "bio": "Tech geek by day, yoga instructor by night. Passionate about mindfulness and innovation.",
        "interests": ["Yoga", "Technology", "Meditation", "Reading", "Fitness"],
        "occupation": "Software Engineer",
        "location": "San Francisco",
    },
    {
        "id": "companion-isabella",
        "name": "Isabella Rodriguez",
        "personality": "flirty",
        "bio": "Artist and dreamer. Looking for someone who appreciates art and adventure!",
        "interests": ["Art", "Painting", "Museums", "Travel", "Music"],
        "occupation": "Graphic Designer",
        "location": "Los Angeles",
    },
    {
        "id": "companion-marcus",
        "name": "Marcus Johnson",
        "personality": "casual",
        "bio": "Fitness trainer and nutrition enthusiast. Let's motivate each other!",
        "interests": ["Fitness", "Nutrition", "Running", "Healthy Living", "Motivation"],
        "occupation": "Personal Trainer",
        "location": "Miami",
    },
]


def seed_records() -> List[IdentityRecord]:
    return [
        IdentityRecord(
            identity_id=p["id"],
            profile=IdentityProfile.from_dict(p),
            is_scripted=True,
        )
        for p in SEED_PROFILES
    ]
