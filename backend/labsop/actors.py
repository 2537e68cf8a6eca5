from fastapi import Header, HTTPException, status

# purpose: resolve the acting operator recorded as creator, updater, reviewer or approver
# status: pilot

ACTOR_HEADER = "X-Actor"


def get_current_actor(x_actor: str | None = Header(default=None, alias=ACTOR_HEADER)) -> str:
    actor = (x_actor or "").strip()
    if not actor:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{ACTOR_HEADER} header required",
        )
    return actor
