import pandera as pa
from pandera import Column, Check, DataFrameSchema

# daily coins: one row per (day, coin) flattened from the harvested samples
daily_coin_schema = DataFrameSchema({
    "date": Column(pa.DateTime),
    "name": Column(str),
    "market_cap": Column(float, Check.ge(0)),
    "price": Column(float, Check.ge(0)),
})

# weekly bucket: per-coin averages over the days the coin was observed
weekly_bucket_schema = DataFrameSchema({
    "name": Column(str, unique=True),
    "price": Column(float, Check.ge(0)),
    "market_cap": Column(float, Check.ge(0)),
})

# smoothed week: 3-bucket weighted average, never all-zero
smoothed_week_schema = DataFrameSchema(
    {
        "name": Column(str, unique=True),
        "price": Column(float, Check.ge(0)),
        "market_cap": Column(float, Check.ge(0)),
    },
    checks=Check(lambda df: (df["price"] > 0) | (df["market_cap"] > 0), element_wise=False),
)
