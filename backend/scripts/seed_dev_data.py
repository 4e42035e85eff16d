from sqlalchemy import select

from app.domain.models.campaign import Campaign
from app.infrastructure.db.session import SessionLocal


DEV_CAMPAIGNS = (
    ("School Library Fund", "Books and reading corners for rural primary schools.", True),
    ("Winter Shelter Appeal", "Beds, meals and warm clothing through the cold months.", True),
    ("Spring Clean-up 2024", "Closed appeal kept for history and checkout rejection tests.", False),
)


def seed_dev_data() -> None:
    with SessionLocal() as db:
        existing = set(db.execute(select(Campaign.title)).scalars().all())
        created = []
        for title, short_description, active in DEV_CAMPAIGNS:
            if title in existing:
                continue
            campaign = Campaign(title=title, short_description=short_description, active=active)
            db.add(campaign)
            created.append(campaign)
        db.commit()

        if not created:
            print("Seed exists: no campaigns created")
            return
        for campaign in created:
            print(f"Seed completed: campaign_id={campaign.id} title={campaign.title} active={campaign.active}")


if __name__ == "__main__":
    seed_dev_data()
