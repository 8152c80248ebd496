import logging
import os
import platform
import resource
import time
from datetime import date, datetime, timezone
from urllib.parse import urlparse

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from mealmate import config
from mealmate.errors import AppError, ErrorCode, build_error_response, register_error_handlers
from mealmate.households import HouseholdService
from mealmate.logging_config import configure_logging
from mealmate.meal_plans import MealPlanService
from mealmate.page_fetcher import PageFetchError
from mealmate.rate_limiter import domain_rate_limiter, global_rate_limiter
from mealmate.recipe_parser import RecipeParser
from mealmate.recipes import RecipeService
from mealmate.site_configs import PARSING_METHODS, SUPPORTED_SITES, is_supported_domain, normalize_domain
from mealmate.staples import StaplesService
from mealmate.store import JsonStore, StoreError
from mealmate.user_agents import user_agent_rotator

configure_logging(config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app, origins=[config.FRONTEND_URL], supports_credentials=True)
limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[config.api_rate_limit()],
    storage_uri="memory://",
)
register_error_handlers(app)

_started_at = time.monotonic()

# Module-level service singletons; tests swap them through init_services()
recipe_parser = RecipeParser()
store = None
households = None
recipes = None
staples = None
meal_plans = None


def init_services(data_store: JsonStore) -> None:
    """Wire the data services to `data_store`."""
    global store, households, recipes, staples, meal_plans
    store = data_store
    households = HouseholdService(store)
    recipes = RecipeService(store)
    staples = StaplesService(store, households)
    meal_plans = MealPlanService(store, staples)


init_services(JsonStore(config.DATA_FILE))


@app.errorhandler(StoreError)
def handle_store_error(error: StoreError):
    logger.exception("Data store error")
    return build_error_response(AppError(str(error), ErrorCode.DATABASE_ERROR, 500, is_operational=False))


def _ok(data=None, status: int = 200, **extra):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise AppError.validation("Request body must be a JSON object")
    return data


def _current_user_id() -> str:
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not user_id:
        raise AppError.authentication()
    return user_id


def _is_valid_url(url) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    parsed = urlparse(url.strip())
    host = parsed.hostname or ""
    return parsed.scheme in ("http", "https") and ("." in host or host == "localhost")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.route("/health")
def health():
    started = time.perf_counter()

    try:
        store.select("users")
        database = "connected"
    except StoreError:
        logger.exception("Health check could not read the data store")
        database = "error"

    data_dir = os.path.dirname(os.path.abspath(config.DATA_FILE))
    services = {
        "database": database,
        "storage": "connected" if os.access(data_dir, os.W_OK) or not os.path.exists(data_dir) else "error",
        "browser": "ready" if recipe_parser.fetcher.is_ready else "not_initialized",
    }
    status = "healthy" if database == "connected" else "degraded"
    elapsed_ms = (time.perf_counter() - started) * 1000

    return jsonify({
        "success": True,
        "data": {
            "status": status,
            "timestamp": _now_iso(),
            "uptime": round(time.monotonic() - _started_at, 3),
            "version": config.APP_VERSION,
            "services": services,
        },
        "response_time": f"{elapsed_ms:.2f}ms",
    })


@app.route("/health/detailed")
def health_detailed():
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is kilobytes on Linux
    rss_mb = round(usage.ru_maxrss / 1024)

    return _ok({
        "status": "healthy",
        "timestamp": _now_iso(),
        "uptime": round(time.monotonic() - _started_at, 3),
        "version": config.APP_VERSION,
        "system": {
            "platform": platform.system().lower(),
            "arch": platform.machine(),
            "python_version": platform.python_version(),
            "memory": {"max_rss": f"{rss_mb}MB"},
            "cpu": {"user": usage.ru_utime, "system": usage.ru_stime},
        },
        "environment": config.environment_summary(),
    })


# ---------------------------------------------------------------------------
# Recipe parsing
# ---------------------------------------------------------------------------

@app.route("/api/recipes/parse", methods=["POST"])
@limiter.limit(config.PARSE_RATE_LIMIT)
def parse_recipe():
    """Parse a recipe from a web page."""
    url = _json_body().get("url")
    if not _is_valid_url(url):
        raise AppError("Invalid URL provided", ErrorCode.INVALID_URL, 400)

    logger.info("Parsing recipe from URL", extra={"url": url})
    try:
        result = recipe_parser.parse_recipe(url.strip())
    except Exception:
        logger.exception("Recipe parsing error", extra={"url": url})
        raise AppError(
            "Failed to parse recipe. The website might not be supported or the recipe format is not recognized.",
            ErrorCode.PARSING_ERROR,
            422,
        )

    if not result.success:
        raise AppError(result.error or "Failed to parse recipe from URL", ErrorCode.PARSING_FAILED, 422)

    return _ok(result.recipe.to_dict(), message="Recipe parsed successfully")


@app.route("/api/recipes/validate-url", methods=["POST"])
def validate_url():
    url = _json_body().get("url")
    if not url:
        raise AppError("URL is required", ErrorCode.URL_REQUIRED, 400)

    if not _is_valid_url(url):
        return jsonify({"success": False, "valid": False, "message": "Invalid URL format"})

    domain = normalize_domain(url.strip())
    supported = is_supported_domain(domain)
    return jsonify({
        "success": True,
        "valid": True,
        "supported": supported,
        "domain": domain,
        "message": (
            "URL is supported for recipe parsing"
            if supported
            else "URL is valid but may have limited parsing support"
        ),
    })


@app.route("/api/recipes/supported-domains")
def supported_domains():
    return _ok({
        "supported_sites": SUPPORTED_SITES,
        "total_sites": len(SUPPORTED_SITES),
        "parsing_methods": PARSING_METHODS,
    })


@app.route("/api/recipes/parse-text", methods=["POST"])
@limiter.limit(config.PARSE_RATE_LIMIT)
def parse_recipe_text():
    """Parse a recipe from free text such as a social media caption."""
    data = _json_body()
    text = data.get("text")
    context = data.get("context") or "general"
    source_url = data.get("sourceUrl") or data.get("source_url")

    if not isinstance(text, str) or not text.strip():
        raise AppError("Recipe text is required", ErrorCode.TEXT_REQUIRED, 400)
    if len(text.strip()) > config.MAX_RECIPE_TEXT_LENGTH:
        raise AppError("Recipe text is too long (max 10,000 characters)", ErrorCode.TEXT_TOO_LONG, 400)

    logger.info("Parsing recipe from text", extra={"context": context, "text_length": len(text)})
    try:
        result = recipe_parser.parse_recipe_from_text(text, context, source_url)
    except Exception:
        logger.exception("Recipe text parsing error", extra={"context": context, "text_length": len(text)})
        raise AppError(
            "Failed to parse recipe from text. Please check the format and try again.",
            ErrorCode.TEXT_PARSING_ERROR,
            422,
        )

    if not result.success:
        raise AppError(result.error or "Failed to parse recipe from text", ErrorCode.TEXT_PARSING_FAILED, 422)

    return _ok(
        result.recipe.to_dict(),
        message="Recipe parsed successfully from text",
        confidence=0.8 if result.confidence is None else result.confidence,
    )


@app.route("/api/recipes/health")
def recipe_parser_health():
    try:
        recipe_parser.initialize_browser()
    except PageFetchError as e:
        logger.error("Recipe parser health check failed", extra={"error_message": str(e)})
        return jsonify({
            "success": False,
            "data": {
                "status": "unhealthy",
                "service": "recipe-parser",
                "browser": "failed",
                "error": str(e),
                "timestamp": _now_iso(),
            },
        }), 503

    return _ok({
        "status": "healthy",
        "service": "recipe-parser",
        "browser": "ready",
        "timestamp": _now_iso(),
    })


@app.route("/api/recipes/rate-limits")
def rate_limit_stats():
    return _ok({
        "global": global_rate_limiter.get_stats(),
        "domains": domain_rate_limiter.get_all_stats(),
        "user_agents": user_agent_rotator.get_stats(),
    })


@app.route("/api/images/health")
def image_health():
    return _ok({"status": "healthy", "service": "image-processor", "timestamp": _now_iso()})


# ---------------------------------------------------------------------------
# Users & households
# ---------------------------------------------------------------------------

@app.route("/api/users/me", methods=["GET"])
def get_me():
    return _ok(households.get_user(_current_user_id()).to_dict())


@app.route("/api/users/me", methods=["PUT"])
def update_me():
    data = _json_body()
    user = households.upsert_user(
        _current_user_id(),
        data.get("email"),
        full_name=data.get("full_name"),
        avatar_url=data.get("avatar_url"),
    )
    return _ok(user.to_dict())


@app.route("/api/households", methods=["POST"])
def create_household():
    household = households.create_household(_json_body().get("household_name"), _current_user_id())
    return _ok(household.to_dict(), 201)


@app.route("/api/households/leave", methods=["POST"])
def leave_household():
    return _ok(households.leave_household(_current_user_id()).to_dict())


@app.route("/api/households/<household_id>", methods=["GET"])
def get_household(household_id: str):
    return _ok(households.get_household(household_id, _current_user_id()).to_dict())


@app.route("/api/households/<household_id>/join", methods=["POST"])
def join_household(household_id: str):
    return _ok(households.join_household(_current_user_id(), household_id).to_dict())


@app.route("/api/households/<household_id>/members", methods=["GET"])
def household_members(household_id: str):
    members = households.list_members(household_id, _current_user_id())
    return _ok([member.to_dict() for member in members])


# ---------------------------------------------------------------------------
# Recipe box
# ---------------------------------------------------------------------------

@app.route("/api/recipes", methods=["GET"])
def list_recipes():
    """List the caller's recipes, optionally filtered.

    Query params: q, cuisine, tags (comma separated), prep_time_category.
    """
    tags = [t.strip() for t in request.args.get("tags", "").split(",") if t.strip()]
    result = recipes.filter_recipes(
        _current_user_id(),
        cuisine=request.args.get("cuisine") or None,
        tags=tags or None,
        prep_time_category=request.args.get("prep_time_category") or None,
        query=request.args.get("q") or None,
    )
    return _ok([recipe.to_dict() for recipe in result], total=len(result))


@app.route("/api/recipes", methods=["POST"])
def create_recipe():
    recipe = recipes.create_recipe(_current_user_id(), _json_body())
    return _ok(recipe.to_dict(), 201)


@app.route("/api/recipes/import", methods=["POST"])
@limiter.limit(config.PARSE_RATE_LIMIT)
def import_recipe():
    """Parse a recipe from a URL and save it to the caller's recipe box."""
    user_id = _current_user_id()
    data = _json_body()
    url = data.get("url")
    if not _is_valid_url(url):
        raise AppError("Invalid URL provided", ErrorCode.INVALID_URL, 400)

    result = recipe_parser.parse_recipe(url.strip())
    if not result.success:
        raise AppError(result.error or "Failed to parse recipe from URL", ErrorCode.PARSING_FAILED, 422)

    recipe = recipes.create_from_parsed(user_id, result.recipe, featured_image=data.get("featured_image"))
    logger.info("Recipe imported", extra={"recipe_id": recipe.id, "url": url})
    return _ok(recipe.to_dict(), 201)


@app.route("/api/recipes/<recipe_id>", methods=["GET"])
def get_recipe(recipe_id: str):
    return _ok(recipes.get_recipe(recipe_id, _current_user_id()).to_dict())


@app.route("/api/recipes/<recipe_id>", methods=["PUT"])
def update_recipe(recipe_id: str):
    return _ok(recipes.update_recipe(recipe_id, _current_user_id(), _json_body()).to_dict())


@app.route("/api/recipes/<recipe_id>", methods=["DELETE"])
def delete_recipe(recipe_id: str):
    recipes.delete_recipe(recipe_id, _current_user_id())
    return _ok(None, message="Recipe deleted")


# ---------------------------------------------------------------------------
# Meal plans
# ---------------------------------------------------------------------------

@app.route("/api/meal-plans", methods=["GET"])
def list_meal_plans():
    user_id = _current_user_id()
    week = request.args.get("week")
    if week:
        plan = meal_plans.get_meal_plan_for_week(user_id, week)
        return _ok(plan.to_dict() if plan else None)
    return _ok([plan.to_dict() for plan in meal_plans.get_user_meal_plans(user_id)])


@app.route("/api/meal-plans", methods=["POST"])
def create_meal_plan():
    data = _json_body()
    plan = meal_plans.create_meal_plan(_current_user_id(), data.get("plan_name"), data.get("start_date"))
    return _ok(plan.to_dict(), 201)


@app.route("/api/meal-plans/current", methods=["GET"])
def current_meal_plan():
    return _ok(meal_plans.get_or_create_current_week_meal_plan(_current_user_id(), date.today()).to_dict())


@app.route("/api/meal-plans/templates", methods=["GET"])
def meal_plan_templates():
    return _ok(meal_plans.get_meal_plan_templates())


@app.route("/api/meal-plans/<plan_id>", methods=["GET"])
def get_meal_plan(plan_id: str):
    return _ok(meal_plans.get_meal_plan(plan_id, _current_user_id()).to_dict())


@app.route("/api/meal-plans/<plan_id>", methods=["PUT"])
def update_meal_plan(plan_id: str):
    return _ok(meal_plans.update_meal_plan(plan_id, _current_user_id(), _json_body()).to_dict())


@app.route("/api/meal-plans/<plan_id>", methods=["DELETE"])
def delete_meal_plan(plan_id: str):
    meal_plans.delete_meal_plan(plan_id, _current_user_id())
    return _ok(None, message="Meal plan deleted")


@app.route("/api/meal-plans/<plan_id>/copy", methods=["POST"])
def copy_meal_plan(plan_id: str):
    data = _json_body()
    plan = meal_plans.copy_meal_plan(plan_id, _current_user_id(), data.get("plan_name"), data.get("start_date"))
    return _ok(plan.to_dict(), 201)


@app.route("/api/meal-plans/<plan_id>/shares", methods=["GET"])
def list_meal_plan_shares(plan_id: str):
    shares = meal_plans.list_shares(plan_id, _current_user_id())
    return _ok([share.to_dict() for share in shares])


@app.route("/api/meal-plans/<plan_id>/shares", methods=["POST"])
def share_meal_plan(plan_id: str):
    data = _json_body()
    share = meal_plans.share_meal_plan(
        plan_id, _current_user_id(), data.get("shared_with_user_id"), can_edit=bool(data.get("can_edit", False))
    )
    return _ok(share.to_dict(), 201)


@app.route("/api/meal-plans/<plan_id>/shares/<user_id>", methods=["DELETE"])
def unshare_meal_plan(plan_id: str, user_id: str):
    meal_plans.unshare_meal_plan(plan_id, _current_user_id(), user_id)
    return _ok(None, message="Share removed")


@app.route("/api/meal-plans/<plan_id>/meals", methods=["POST"])
def add_planned_meal(plan_id: str):
    data = _json_body()
    for field in ("recipe_id", "day_of_week", "meal_type"):
        if not data.get(field):
            raise AppError(f"Missing required field: {field}", ErrorCode.MISSING_REQUIRED_FIELD, 400)

    meal = meal_plans.add_meal_to_plan(
        plan_id,
        _current_user_id(),
        data["recipe_id"],
        data["day_of_week"],
        data["meal_type"],
        serving_size=data.get("serving_size", 1),
        notes=data.get("notes"),
        is_batch_cook=bool(data.get("is_batch_cook", False)),
    )
    return _ok(meal.to_dict(), 201)


@app.route("/api/planned-meals/<meal_id>", methods=["PUT"])
def update_planned_meal(meal_id: str):
    return _ok(meal_plans.update_planned_meal(meal_id, _current_user_id(), _json_body()).to_dict())


@app.route("/api/planned-meals/<meal_id>", methods=["DELETE"])
def delete_planned_meal(meal_id: str):
    meal_plans.remove_meal_from_plan(meal_id, _current_user_id())
    return _ok(None, message="Meal removed")


@app.route("/api/meal-plans/<plan_id>/grocery-list", methods=["POST"])
def generate_grocery_list(plan_id: str):
    items = meal_plans.generate_grocery_list(plan_id, _current_user_id())
    return _ok([item.to_dict() for item in items], total=len(items))


@app.route("/api/meal-plans/<plan_id>/analysis", methods=["GET"])
def meal_plan_analysis(plan_id: str):
    return _ok(meal_plans.get_weekly_analysis(plan_id, _current_user_id()))


# ---------------------------------------------------------------------------
# Household staples
# ---------------------------------------------------------------------------

@app.route("/api/households/<household_id>/staples", methods=["GET"])
def list_staples(household_id: str):
    result = staples.get_household_staples(household_id, _current_user_id())
    return _ok([staple.to_dict() for staple in result])


@app.route("/api/households/<household_id>/staples", methods=["POST"])
def create_staple(household_id: str):
    staple = staples.create_staple(household_id, _current_user_id(), _json_body())
    return _ok(staple.to_dict(), 201)


@app.route("/api/households/<household_id>/staples/suggestions", methods=["GET"])
def staple_suggestions(household_id: str):
    suggestions = staples.get_staple_suggestions(household_id, _current_user_id())
    return _ok([suggestion.to_dict() for suggestion in suggestions])


@app.route("/api/households/<household_id>/staples/defaults", methods=["POST"])
def setup_default_staples(household_id: str):
    created = staples.setup_default_staples(household_id, _current_user_id())
    return _ok([staple.to_dict() for staple in created], 201)


@app.route("/api/households/<household_id>/staples/by-category", methods=["GET"])
def staples_by_category(household_id: str):
    groups = staples.get_staples_by_category(household_id, _current_user_id())
    return _ok({category: [s.to_dict() for s in items] for category, items in groups.items()})


@app.route("/api/staples/bulk", methods=["PUT"])
def bulk_update_staples():
    updated = staples.bulk_update_staples(_current_user_id(), _json_body().get("updates"))
    return _ok([staple.to_dict() for staple in updated])


@app.route("/api/staples/purchased", methods=["POST"])
def mark_staples_purchased():
    usages = staples.mark_staples_purchased(_current_user_id(), _json_body().get("usage_ids"))
    return _ok([usage.to_dict() for usage in usages])


@app.route("/api/staples/<staple_id>", methods=["PUT"])
def update_staple(staple_id: str):
    return _ok(staples.update_staple(staple_id, _current_user_id(), _json_body()).to_dict())


@app.route("/api/staples/<staple_id>", methods=["DELETE"])
def delete_staple(staple_id: str):
    staples.delete_staple(staple_id, _current_user_id())
    return _ok(None, message="Staple removed")


@app.route("/api/meal-plans/<plan_id>/staples", methods=["POST"])
def add_staples_to_plan(plan_id: str):
    data = _json_body()
    usages = staples.add_staples_to_grocery_list(
        plan_id, _current_user_id(), data.get("staple_ids"), data.get("quantities") or {}
    )
    return _ok([usage.to_dict() for usage in usages], 201)


if __name__ == "__main__":
    logger.info("Starting MealMate API", extra=config.environment_summary())
    app.run(host="0.0.0.0", port=config.PORT, debug=config.is_development())
