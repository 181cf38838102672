"""
FastAPI Application for PathFlow Backend
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union
from contextlib import asynccontextmanager

import psycopg
from psycopg.errors import UniqueViolation
from fastapi import FastAPI, HTTPException, status, Request, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

import providers
from auth import (
    create_access_token,
    get_current_user,
    get_optional_user,
    hash_password,
    public_user,
    verify_password,
)
from config import settings
from graph import get_graph
from parsing import LearningPathParseError, extract_json
from schemas import LearningStep, PathMetadata, clean_skills, to_path_summary
from state import initial_state
from store import PathStore, get_store, open_pool
from rate_limiter import (
    init_rate_limiter,
    close_rate_limiter,
    get_rate_limiter,
    RateLimitConfig
)

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

DEMO_STATS = {
    "total_paths": 0,
    "recent_paths": [],
    "popular_skills": [
        {"skill": "JavaScript", "count": 15},
        {"skill": "Python", "count": 12},
        {"skill": "React", "count": 10},
        {"skill": "HTML", "count": 8},
        {"skill": "CSS", "count": 7},
    ],
    "popular_goals": [
        {"goal": "Full Stack Developer", "count": 8},
        {"goal": "Frontend Developer", "count": 6},
        {"goal": "Data Scientist", "count": 4},
        {"goal": "Backend Developer", "count": 3},
    ],
    "message": "Showing demo data - database may not be connected",
}

# ============================================================================
# PYDANTIC MODELS
# ============================================================================

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: Optional[str] = Field(None, max_length=100)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        v = v.strip()
        if not v or any(c.isspace() for c in v):
            raise ValueError("Username cannot contain spaces")
        return v


class LoginRequest(BaseModel):
    """Log in with either a username or an email address.

    `login` holds either form; `username` and `email` are accepted as aliases.
    """
    login: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def require_identifier(self):
        if not (self.login or self.username or self.email):
            raise ValueError("Username or email is required")
        return self

    @property
    def identifier(self) -> str:
        return (self.login or self.username or self.email).strip()


class AuthResponse(BaseModel):
    token: str
    user: dict


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class ChangePasswordRequest(BaseModel):
    current_password: str = ""
    new_password: str = ""


class DeleteAccountRequest(BaseModel):
    password: str = ""


class GenerateRequest(BaseModel):
    skills: Union[list[str], str] = Field(...)
    goal: str = Field(..., min_length=1, max_length=200)

    @field_validator("skills")
    @classmethod
    def validate_skills(cls, v):
        skills = clean_skills(v)
        if not skills:
            raise ValueError("At least one skill is required")
        return skills

    @field_validator("goal")
    @classmethod
    def validate_goal(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Goal is required")
        return v


class GeneratedPath(BaseModel):
    id: Optional[str] = None  # Set when the path was saved
    generation_id: str
    goal: str
    skills: list[str]
    path: list[LearningStep]
    generated_by: str
    created_at: Optional[datetime] = None


class GenerateResponse(BaseModel):
    success: bool = True
    data: GeneratedPath
    provider_errors: list[str] = []
    warning: Optional[str] = None


class MetadataUpdateRequest(BaseModel):
    notes: Optional[str] = None
    tags: Optional[list[str]] = None
    target_date: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str = "0.1.0"
    environment: str
    database: str
    gemini: str
    openai: str
    rate_limiting: bool
    timestamp: datetime

# ============================================================================
# LIFECYCLE & APP
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up PathFlow Backend...")
    app.state.pool = None
    app.state.store = None

    # Database is optional: generation keeps working without it
    pool = None
    try:
        pool = await open_pool(settings.database_url)
        store = PathStore(pool)
        await store.setup()
        app.state.pool = pool
        app.state.store = store
        logger.info("Database connected successfully")
    except Exception as e:
        logger.warning(f"Database unavailable, running without persistence: {e}")
        if pool is not None:
            await pool.close()

    # Initialize rate limiter
    try:
        rate_config = RateLimitConfig(
            ai_limit=settings.rate_limit_ai,
            ai_window_seconds=settings.rate_limit_ai_window,
            api_limit=settings.rate_limit_api,
            api_window_seconds=settings.rate_limit_api_window
        )
        await init_rate_limiter(settings.redis_url, rate_config)
        logger.info(f"Rate limiter initialized (ai={settings.rate_limit_ai}/{settings.rate_limit_ai_window}s, api={settings.rate_limit_api}/{settings.rate_limit_api_window}s)")
    except Exception as e:
        logger.warning(f"Rate limiter unavailable (Redis connection failed): {e}")

    # Initialize graph
    try:
        app.state.workflow = await get_graph(app.state.pool)
        logger.info("LangGraph workflow initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize graph: {e}")
        raise

    await providers.probe_providers()

    yield

    # Cleanup
    logger.info("Shutting down...")
    await close_rate_limiter()
    if app.state.pool is not None:
        await app.state.pool.close()

app = FastAPI(
    title="PathFlow API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    message = "Internal server error" if settings.environment == "production" else str(exc)
    return JSONResponse(status_code=500, content={"success": False, "detail": message})

# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_workflow(request: Request):
    workflow = getattr(request.app.state, "workflow", None)
    if workflow is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Graph not initialized")
    return workflow


def client_id(request: Request) -> str:
    return request.client.host if request.client else "anonymous"


def rate_limited(scope: str):
    """Dependency factory enforcing the token bucket for a scope."""

    async def check(request: Request) -> None:
        try:
            limiter = await get_rate_limiter()
        except RuntimeError:
            # Rate limiter not available, continue without limiting
            logger.debug("Rate limiter not available, skipping rate limit check")
            return

        allowed, remaining, reset_in = await limiter.check_rate_limit(client_id(request), scope=scope)
        if not allowed:
            message = (
                "AI generation limit exceeded. Please wait a moment."
                if scope == "ai"
                else "Too many requests from this IP, please try again later."
            )
            raise HTTPException(
                status.HTTP_429_TOO_MANY_REQUESTS,
                f"{message} Try again in {reset_in} seconds.",
                headers={"Retry-After": str(reset_in)}
            )

    return check


async def path_or_404(store: PathStore, path_id: str, user: dict) -> dict:
    record = await store.get_path(path_id, user["id"])
    if record is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Learning path not found")
    return record

# ============================================================================
# HEALTH & QUOTA
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check(store: Optional[PathStore] = Depends(get_store)):
    try:
        await get_rate_limiter()
        limiting = True
    except RuntimeError:
        limiting = False

    return HealthResponse(
        status="ok",
        environment=settings.environment,
        database="connected" if store is not None else "disconnected",
        gemini="initialized" if providers.provider_status.gemini_available else "not available",
        openai="configured" if settings.openai_configured else "not configured",
        rate_limiting=limiting,
        timestamp=datetime.now(timezone.utc),
    )


@app.get("/api/quota")
async def get_quota(request: Request, scope: str = Query("ai", pattern="^(ai|api)$")):
    """Get current rate limit quota status for the caller."""
    try:
        limiter = await get_rate_limiter()
        return await limiter.get_quota_status(client_id(request), scope=scope)
    except RuntimeError:
        # Rate limiter not available
        return {
            "remaining": -1,  # -1 means unlimited
            "limit": -1,
            "window_seconds": 0,
            "reset_in_seconds": 0,
            "scope": scope,
            "message": "Rate limiting not enabled"
        }

# ============================================================================
# AUTH
# ============================================================================

@app.post(
    "/api/auth/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited("api"))],
)
async def register(request: RegisterRequest, store: Optional[PathStore] = Depends(get_store)):
    if store is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Database is not available")

    email = request.email.lower()
    if await store.find_user_by_login(request.username) or await store.find_user_by_email(email):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Username or email already registered")

    try:
        user = await store.create_user(
            username=request.username,
            email=email,
            name=(request.name or request.username).strip(),
            password_hash=hash_password(request.password),
        )
    except UniqueViolation:
        # Lost a race with a concurrent registration
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Username or email already registered")
    logger.info(f"[Auth] Registered user {user['username']}")
    return AuthResponse(token=create_access_token(user["id"]), user=public_user(user))


@app.post("/api/auth/login", response_model=AuthResponse, dependencies=[Depends(rate_limited("api"))])
async def login(request: LoginRequest, store: Optional[PathStore] = Depends(get_store)):
    if store is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Database is not available")

    user = await store.find_user_by_login(request.identifier)
    if user is None or not verify_password(request.password, user["password_hash"]):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")
    if user.get("is_active") is False:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Account is deactivated")

    return AuthResponse(token=create_access_token(user["id"]), user=public_user(user))


@app.post("/api/auth/logout")
async def logout(user: dict = Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy
    return {"success": True, "message": "Logged out successfully"}


@app.get("/api/auth/me")
async def me(user: dict = Depends(get_current_user)):
    return {"success": True, "user": public_user(user)}

# ============================================================================
# PROFILE
# ============================================================================

@app.get("/api/user/profile")
async def get_profile(user: dict = Depends(get_current_user), store: PathStore = Depends(get_store)):
    paths = await store.list_paths(user["id"])
    total_steps = sum(len(p.get("steps") or []) for p in paths)
    completed_steps = sum(len(p.get("completed_steps") or []) for p in paths)

    created_at = user.get("created_at")
    account_age = (datetime.now(timezone.utc) - created_at).days if created_at else 0

    stats = {
        "total_paths": len(paths),
        "total_steps": total_steps,
        "completed_steps": completed_steps,
        "completion_rate": round(completed_steps / total_steps * 100) if total_steps > 0 else 0,
        "account_age_days": account_age,
        "recent_paths": [
            {
                "id": p["id"],
                "goal": p["goal"],
                "generated_by": p.get("generated_by"),
                "created_at": p.get("created_at"),
            }
            for p in paths[:5]
        ],
    }
    return {"user": public_user(user), "stats": stats}


@app.patch("/api/user/profile")
async def update_profile(
    request: ProfileUpdateRequest,
    user: dict = Depends(get_current_user),
    store: PathStore = Depends(get_store),
):
    updates = {}
    if request.name and request.name.strip():
        updates["name"] = request.name.strip()

    if request.email:
        email = request.email.strip().lower()
        existing = await store.find_user_by_email(email)
        if existing is not None and existing["id"] != user["id"]:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "Email already in use")
        updates["email"] = email

    if not updates:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No valid updates provided")

    updated = await store.update_user(user["id"], **updates)
    return {"message": "Profile updated successfully", "user": public_user(updated)}


@app.post("/api/user/change-password")
async def change_password(
    request: ChangePasswordRequest,
    user: dict = Depends(get_current_user),
    store: PathStore = Depends(get_store),
):
    if not request.current_password or not request.new_password:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Current and new passwords are required")
    if len(request.new_password) < 6:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "New password must be at least 6 characters")
    if not verify_password(request.current_password, user["password_hash"]):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Current password is incorrect")

    await store.update_user(user["id"], password_hash=hash_password(request.new_password))
    return {"message": "Password changed successfully"}


@app.delete("/api/user/account")
async def delete_account(
    request: DeleteAccountRequest,
    user: dict = Depends(get_current_user),
    store: PathStore = Depends(get_store),
):
    if not request.password:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Password is required to delete account")
    if not verify_password(request.password, user["password_hash"]):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Incorrect password")

    # Learning paths go with the user (ON DELETE CASCADE)
    await store.delete_user(user["id"])
    logger.info(f"[Auth] Deleted account {user['username']}")
    return {"message": "Account deleted successfully"}

# ============================================================================
# GENERATION
# ============================================================================

@app.post("/api/generate", response_model=GenerateResponse, dependencies=[Depends(rate_limited("ai"))])
async def generate_learning_path(
    request: GenerateRequest,
    user: Optional[dict] = Depends(get_optional_user),
    store: Optional[PathStore] = Depends(get_store),
    workflow=Depends(get_workflow),
):
    generation_id = str(uuid.uuid4())
    user_id = user["id"] if user else None
    logger.info(f"[Generate] Goal: {request.goal}, Skills: {request.skills}, Run: {generation_id}")

    try:
        config = {"configurable": {"thread_id": generation_id}}
        result = await workflow.ainvoke(initial_state(request.skills, request.goal, user_id), config)
    except Exception as e:
        logger.error(f"[Generate] Error: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to generate learning path")

    data = GeneratedPath(
        generation_id=generation_id,
        goal=request.goal,
        skills=request.skills,
        path=result["learning_path"],
        generated_by=result["generated_by"],
    )
    response = GenerateResponse(data=data, provider_errors=result["provider_errors"])

    # Save only for signed-in users with a database
    if user is not None and store is not None:
        try:
            record = await store.create_path(
                user_id=user["id"],
                goal=request.goal,
                skills=request.skills,
                steps=result["learning_path"],
                generated_by=result["generated_by"],
            )
            data.id = record["id"]
            data.created_at = record.get("created_at")
        except psycopg.Error as e:
            logger.error(f"[Generate] Error saving to database: {e}")
            response.warning = "Path generated but not saved to database"

    logger.info(f"[Generate] Done via {data.generated_by}, saved={data.id is not None}")
    return response


@app.get("/api/market-insights", dependencies=[Depends(rate_limited("ai"))])
async def market_insights(skill: Optional[str] = None):
    if not skill or not skill.strip():
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Skill parameter is required")
    skill = skill.strip()

    prompt = f"""Provide market insights for the skill: {skill}

Return a JSON object with the following structure:
{{
  "skill": "{skill}",
  "demand_level": "high/medium/low",
  "average_salary": "$XX,XXX - $XX,XXX",
  "top_companies": ["Company1", "Company2", "Company3"],
  "related_skills": ["skill1", "skill2", "skill3"],
  "industry_trends": ["trend1", "trend2"],
  "job_growth": "XX% expected growth",
  "career_paths": ["path1", "path2"]
}}

Return ONLY valid JSON, no markdown formatting."""

    try:
        text, provider = await providers.generate_text(
            prompt,
            system="You are a market research analyst. Always respond with valid JSON only."
        )
    except providers.AllProvidersFailed as e:
        logger.error(f"[MarketInsights] {e}")
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "AI service is not available")

    try:
        insights = extract_json(text)
    except LearningPathParseError as e:
        logger.error(f"[MarketInsights] Unparseable response from {provider}: {e}")
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Failed to parse AI response. Please try again.")
    if not isinstance(insights, dict):
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Failed to parse AI response. Please try again.")

    return {"success": True, "data": insights, "generated_by": provider}

# ============================================================================
# SAVED PATHS
# ============================================================================

@app.get("/api/paths/my-paths")
async def my_paths(user: dict = Depends(get_current_user), store: PathStore = Depends(get_store)):
    paths = [to_path_summary(p) for p in await store.list_paths(user["id"])]
    return {"success": True, "count": len(paths), "paths": paths}


@app.get("/api/paths/{path_id}")
async def get_path(path_id: str, user: dict = Depends(get_current_user), store: PathStore = Depends(get_store)):
    record = await path_or_404(store, path_id, user)
    return {"success": True, "path": to_path_summary(record)}


@app.patch("/api/paths/{path_id}/steps/{step_index}")
async def toggle_step(
    path_id: str,
    step_index: int,
    user: dict = Depends(get_current_user),
    store: PathStore = Depends(get_store),
):
    """Toggle completion of one step (0-based index)."""
    if step_index < 0:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid step index")

    record = await path_or_404(store, path_id, user)
    if step_index >= len(record["steps"]):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Step index out of range")

    completed = set(record.get("completed_steps") or [])
    was_completed = step_index in completed
    if was_completed:
        completed.discard(step_index)
    else:
        completed.add(step_index)

    updated = await store.set_completed_steps(path_id, user["id"], sorted(completed))
    summary = to_path_summary(updated)
    return {
        "success": True,
        "message": "Step marked as incomplete" if was_completed else "Step marked as complete",
        "path": {
            "id": summary.id,
            "completed_steps": summary.completed_steps,
            "total_steps": summary.total_steps,
            "completed_count": summary.completed_count,
            "progress_percentage": summary.progress_percentage,
        },
    }


@app.delete("/api/paths/{path_id}")
async def delete_path(path_id: str, user: dict = Depends(get_current_user), store: PathStore = Depends(get_store)):
    if not await store.delete_path(path_id, user["id"]):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Learning path not found")
    return {"success": True, "message": "Learning path deleted successfully"}


@app.patch("/api/paths/{path_id}/metadata")
async def update_metadata(
    path_id: str,
    request: MetadataUpdateRequest,
    user: dict = Depends(get_current_user),
    store: PathStore = Depends(get_store),
):
    record = await path_or_404(store, path_id, user)
    metadata = dict(record.get("metadata") or {})
    metadata.update(request.model_dump(exclude_unset=True))

    updated = await store.update_path_metadata(path_id, user["id"], metadata)
    return {
        "success": True,
        "message": "Metadata updated successfully",
        "metadata": PathMetadata(**updated["metadata"]),
    }

# ============================================================================
# DASHBOARD
# ============================================================================

@app.get("/api/dashboard/stats")
async def dashboard_stats(store: Optional[PathStore] = Depends(get_store)):
    if store is None:
        return {"success": True, "stats": DEMO_STATS}

    try:
        stats = {
            "total_paths": await store.count_paths(),
            "recent_paths": await store.recent_paths(10),
            "popular_skills": await store.popular_skills(8),
            "popular_goals": await store.popular_goals(8),
        }
    except psycopg.Error as e:
        logger.error(f"[Dashboard] Stats query failed: {e}")
        return {"success": True, "stats": DEMO_STATS}

    return {"success": True, "stats": stats}


@app.get("/api/dashboard/my-paths")
async def dashboard_my_paths(user: dict = Depends(get_current_user), store: PathStore = Depends(get_store)):
    recent = await store.list_paths(user["id"], limit=10)
    month_start = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    user_stats = {
        "total_paths": await store.count_paths(user["id"]),
        "recent_path": to_path_summary(recent[0]) if recent else None,
        "paths_this_month": sum(
            1 for p in recent if p.get("created_at") and p["created_at"] >= month_start
        ),
    }
    return {
        "success": True,
        "user_paths": [to_path_summary(p) for p in recent],
        "user_stats": user_stats,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.backend_port, reload=True)
