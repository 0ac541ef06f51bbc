from fastapi import Header, HTTPException, Query


def get_active_business(
    business_query: str | None = Query(default=None, alias="business"),
    x_business: str | None = Header(default=None, alias="X-Business"),
) -> str:
    active = x_business or business_query
    if not active:
        raise HTTPException(
            status_code=400,
            detail="Missing business context. Provide X-Business header or business query param.",
        )
    return active
