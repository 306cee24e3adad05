"""Database seeder for local development and paging benchmarks."""
import asyncio
import argparse
import random
import time
from datetime import datetime, timezone, timedelta
from sqlalchemy import insert
from blogrepo.database import engine, async_session, Base
from blogrepo.models import Author, Category, Post, Tag, post_tags
from blogrepo.services.slug_index import slugify

TAGS = ["Python", "FastAPI", "PostgreSQL", "Redis", "Docker", "Kubernetes",
        "React", "TypeScript", "AWS", "DevOps", "Testing", "Performance",
        "Security", "Microservices", "GraphQL", "REST API"]

CATEGORIES = ["Backend", "Frontend", "Infrastructure", "Data", "Career"]

async def seed(small: bool = False):
    num_authors = 10 if small else 50
    num_posts = 100 if small else 10000

    print(f"Seeding: {num_authors} authors, {len(CATEGORIES)} categories, {num_posts} posts")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        tags = [Tag(name=name, slug=slugify(name)) for name in TAGS]
        categories = [
            Category(name=name, description=f"Posts about {name.lower()}.", slug=slugify(name))
            for name in CATEGORIES
        ]
        authors = [
            Author(
                full_name=f"Author {i}",
                email=f"author_{i:04d}@example.com",
                bio=f"I am test author number {i}. I write about technology.",
                slug=f"author-{i:04d}",
            )
            for i in range(num_authors)
        ]
        session.add_all(tags + categories + authors)
        await session.flush()
        print(f"  Created {len(tags)} tags, {len(categories)} categories, {len(authors)} authors")

        # Insert posts in batches; join rows go in after each flush.
        batch_size = 500
        total_links = 0
        for batch_start in range(0, num_posts, batch_size):
            batch_end = min(batch_start + batch_size, num_posts)
            batch: list[Post] = []
            for i in range(batch_start, batch_end):
                topic = random.choice(TAGS)
                posted = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 730))
                batch.append(Post(
                    title=f"Post {i}: How to optimize {topic} applications",
                    short_description=f"A guide to optimizing {topic} applications for production.",
                    body=f"This is the full body of post {i}. " * 20,
                    slug=f"post-{i}-optimize-{slugify(topic)}",
                    view_count=random.randint(0, 10000),
                    published=random.random() > 0.1,  # 90% published
                    posted_date=posted,
                    author_id=random.choice(authors).id,
                    category_id=random.choice(categories).id,
                ))
            session.add_all(batch)
            await session.flush()

            links = [
                {"post_id": post.id, "tag_id": tag.id}
                for post in batch
                for tag in random.sample(tags, k=random.randint(1, 4))
            ]
            await session.execute(insert(post_tags), links)
            total_links += len(links)
            print(f"  Batch {batch_start}-{batch_end}: posts created")

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Authors: {num_authors}")
    print(f"  Posts: {num_posts}")
    print(f"  Post/tag links: {total_links}")


def main():
    parser = argparse.ArgumentParser(description="Seed the blog content database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (100 posts)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
