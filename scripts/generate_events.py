"""
Raw Event Dataset Generator
Generates a raw event log with regular traffic, rapid bursts, null identities
and malformed timestamps, for exercising the consolidation pipeline.
"""

import random
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import polars as pl
from faker import Faker

fake = Faker()
random.seed(42)
np.random.seed(42)
Faker.seed(42)

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "raw"
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

PLATFORMS = ["web", "android", "ios"]
BASE_DATE = datetime(2023, 2, 1)


# ==========================================
# USERS
# ==========================================
def generate_user_ids(n=2000):
    return [fake.unique.user_name() for _ in range(n)]


# ==========================================
# REGULAR TRAFFIC - VECTORIZED
# ==========================================
def generate_regular_events(n, user_ids, days=28):
    print(f"📊 Generating {n:,} regular events...")
    
    offsets = np.random.randint(0, days * 24 * 60 * 60, n)
    timestamps = [BASE_DATE + timedelta(seconds=int(s)) for s in offsets]
    
    return pl.DataFrame({
        "user_id": np.random.choice(user_ids, n),
        "platform": np.random.choice(PLATFORMS, n, p=[0.5, 0.3, 0.2]),
        "timestamp": [ts.strftime("%Y-%m-%d %H:%M:%S") for ts in timestamps],
        "volume": np.random.randint(0, 20, n).astype(float),
        "fee": np.round(np.random.uniform(0, 5, n), 2),
    })


# ==========================================
# BURSTS - many events from one user within an hour
# ==========================================
def generate_bursts(n_bursts, user_ids, days=28):
    print(f"📊 Generating {n_bursts:,} activity bursts...")
    
    frames = []
    for _ in range(n_bursts):
        size = random.randint(20, 120)
        start = BASE_DATE + timedelta(days=random.randint(0, days - 1), hours=random.randint(0, 22))
        offsets = sorted(np.random.randint(0, 50 * 60, size))
        frames.append(pl.DataFrame({
            "user_id": [random.choice(user_ids)] * size,
            "platform": [random.choice(PLATFORMS)] * size,
            "timestamp": [(start + timedelta(seconds=int(s))).strftime("%Y-%m-%d %H:%M:%S") for s in offsets],
            "volume": np.random.randint(1, 5, size).astype(float),
            "fee": np.round(np.random.uniform(0, 1, size), 2),
        }))
    
    return pl.concat(frames)


# ==========================================
# DIRTY ROWS
# ==========================================
def inject_dirty_rows(df, null_identity=200, malformed=50):
    print(f"📊 Injecting {null_identity:,} null-identity and {malformed:,} malformed rows...")
    
    nulls = df.sample(null_identity, seed=42).with_columns(pl.lit(None, dtype=pl.String).alias("user_id"))
    broken = df.sample(malformed, seed=7).with_columns(
        pl.Series("timestamp", [random.choice(["", "not-a-date", "2023-13-45 25:61:00"]) for _ in range(malformed)])
    )
    
    return pl.concat([df, nulls, broken]).sample(fraction=1.0, shuffle=True, seed=42)


# ==========================================
# MAIN
# ==========================================
def main():
    print("=" * 60)
    print("📈 Raw Event Dataset Generator")
    print("=" * 60 + "\n")
    
    user_ids = generate_user_ids(2000)
    
    events = pl.concat([
        generate_regular_events(100000, user_ids),
        generate_bursts(300, user_ids),
    ])
    events = inject_dirty_rows(events)
    
    output_file = OUTPUT_DIR / "events.csv"
    events.write_csv(output_file)
    
    size = output_file.stat().st_size / 1024 / 1024
    print("\n" + "=" * 60)
    print("✅ Dataset Generation Complete!")
    print("=" * 60)
    print(f"\n📄 {output_file}: {len(events):,} rows ({size:.2f} MB)\n")


if __name__ == "__main__":
    main()
