import logging

from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from .apps import get_runtime
from .exceptions import (
    AppStoreError,
    MalformedRequestError,
    NotFoundError,
)
from .forms import (
    AddAppForm,
    CountryForm,
    KeywordAddForm,
    RankingForm,
    RatingForm,
    RefreshForm,
)
from .sync import SyncTrigger

logger = logging.getLogger(__name__)


# ── Serialization helpers ─────────────────────────────────────────────────


def rating_stars(rating) -> str:
    """★★★★½ style rendering of an average rating."""
    if rating is None:
        return "N/A"
    full = int(rating)
    half = rating - full >= 0.5 and full < 5
    return "★" * full + ("½" if half else "") + "☆" * (5 - full - (1 if half else 0))


def formatted_count(count) -> str:
    if count is None:
        return "0"
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)


def _keyword_json(keyword) -> dict:
    data = keyword.to_dict()
    data.update({
        "currentRank": keyword.current_rank,
        "previousRank": keyword.previous_rank,
        "rankChange": keyword.rank_change,
        "estimatedDownloads": keyword.estimated_downloads,
    })
    return data


def _app_json(app) -> dict:
    data = app.to_dict()
    data["keywords"] = [_keyword_json(k) for k in app.keywords]
    latest = app.latest_rating
    data["latestRating"] = latest.to_dict() if latest else None
    data["ratingStars"] = rating_stars(latest.rating if latest else None)
    data["formattedRatingCount"] = formatted_count(latest.rating_count if latest else None)
    return data


def _error(message, status=400, **extra):
    return JsonResponse({"error": message, **extra}, status=status)


def _app_store_error(e: AppStoreError):
    logger.warning(f"App Store request failed: {e}")
    if isinstance(e, MalformedRequestError):
        return _error(str(e), status=400)
    if isinstance(e, NotFoundError):
        return _error(str(e), status=404)
    return _error(f"App Store request failed: {e}", status=502)


def _form_error(form):
    return _error("Invalid form data.", details=form.errors.get_json_data())


# ── Collection ────────────────────────────────────────────────────────────


@require_http_methods(["GET", "POST"])
def apps_view(request):
    """GET: the merged collection with derived ranking fields.  POST: add an app."""
    if request.method == "POST":
        return _add_app(request)

    runtime = get_runtime()
    collection = runtime.collection
    return JsonResponse({
        "apps": [_app_json(app) for app in collection.apps],
        "country": collection.country,
        "statistics": collection.statistics(),
    })


def _add_app(request):
    """Look an app up by trackId and start tracking it."""
    form = AddAppForm(request.POST)
    if not form.is_valid():
        return _form_error(form)

    runtime = get_runtime()
    track_id = form.cleaned_data["track_id"]
    if runtime.collection.is_tracking(track_id):
        return _error("This app has already been added.", status=409)

    country = form.cleaned_data["country"] or runtime.collection.country
    try:
        entry = runtime.client.lookup_by_id(track_id, country=country)
        if entry is None:
            raise NotFoundError(f"No App Store app with id {track_id} in {country.upper()}.")
    except AppStoreError as e:
        return _app_store_error(e)

    app = runtime.collection.add_app(entry)
    if app is None:
        return _error("This app has already been added.", status=409)
    return JsonResponse({"success": True, "app": _app_json(app)}, status=201)


@require_POST
def app_delete_view(request, app_id):
    """Stop tracking an app; its keywords and history go with it."""
    if not get_runtime().collection.remove_app(app_id):
        return _error("App not found.", status=404)
    return JsonResponse({"success": True})


@require_POST
def keywords_add_view(request, app_id):
    """
    Add keywords to an app.

    With ``fetch_rank`` set, a refresh limited to the new keywords starts
    in the background so they get a first ranking right away.
    """
    form = KeywordAddForm(request.POST)
    if not form.is_valid():
        return _form_error(form)

    runtime = get_runtime()
    if runtime.collection.find_app(app_id) is None:
        return _error("App not found.", status=404)

    country = form.cleaned_data["country"] or runtime.collection.country
    created = runtime.collection.add_keywords(app_id, form.cleaned_data["keywords"], country)

    skipped = len(form.cleaned_data["keywords"]) - len(created)
    response = {
        "success": True,
        "created": [_keyword_json(k) for k in created],
        "skipped": skipped,
    }
    if skipped:
        response["warning"] = f"Skipped {skipped} keyword(s) already tracked for {country.upper()}."
    if created and form.cleaned_data["fetch_rank"]:
        response["refresh_started"] = runtime.refresher.start(
            app_ids=[app_id], keyword_ids=[k.id for k in created]
        )
    return JsonResponse(response, status=201 if created else 200)


@require_POST
def keyword_delete_view(request, app_id, keyword_id):
    if not get_runtime().collection.remove_keyword(app_id, keyword_id):
        return _error("Keyword not found.", status=404)
    return JsonResponse({"success": True})


@require_POST
def ranking_add_view(request, app_id):
    form = RankingForm(request.POST)
    if not form.is_valid():
        return _form_error(form)
    ranking = get_runtime().collection.append_ranking(
        app_id,
        form.cleaned_data["keyword_id"],
        form.cleaned_data["rank"],
        impressions=form.cleaned_data["impressions"],
    )
    if ranking is None:
        return _error("App or keyword not found.", status=404)
    return JsonResponse({"success": True, "ranking": ranking.to_dict()}, status=201)


@require_POST
def rating_add_view(request, app_id):
    form = RatingForm(request.POST)
    if not form.is_valid():
        return _form_error(form)
    snapshot = get_runtime().collection.append_rating(
        app_id, form.cleaned_data["rating"], form.cleaned_data["rating_count"]
    )
    if snapshot is None:
        return _error("App not found.", status=404)
    return JsonResponse({"success": True, "snapshot": snapshot.to_dict()}, status=201)


@require_GET
def reviews_view(request, app_id):
    """Most recent customer reviews for a tracked app."""
    runtime = get_runtime()
    app = runtime.collection.find_app(app_id)
    if app is None:
        return _error("App not found.", status=404)

    try:
        page = max(1, int(request.GET.get("page", "1")))
    except (TypeError, ValueError):
        page = 1
    country = request.GET.get("country") or runtime.collection.country

    try:
        reviews = runtime.client.fetch_reviews(app.track_id, country=country, page=page)
    except AppStoreError as e:
        return _app_store_error(e)

    distribution = {str(stars): 0 for stars in range(1, 6)}
    for review in reviews:
        distribution[str(review["rating"])] += 1
    return JsonResponse({
        "app_id": app.id,
        "page": page,
        "reviews": reviews,
        "distribution": distribution,
    })


# ── Search / settings ─────────────────────────────────────────────────────


@require_GET
def search_view(request):
    """
    Search the App Store for apps by name or App Store URL.

    A newer query from the same session supersedes this one; superseded
    requests answer with ``superseded: true`` and no results.
    """
    runtime = get_runtime()
    query = request.GET.get("q", "").strip()
    country = request.GET.get("country") or runtime.collection.country
    try:
        results = runtime.search.search(query, country=country)
    except AppStoreError as e:
        return _app_store_error(e)

    if results is None:
        return JsonResponse({"apps": [], "superseded": True})
    return JsonResponse({
        "apps": [
            {
                "trackId": r["trackId"],
                "trackName": r["trackName"],
                "artworkUrl100": r["artworkUrl100"],
                "bundleId": r["bundleId"],
                "sellerName": r["sellerName"],
                "primaryGenreName": r["primaryGenreName"],
                "ratingStars": rating_stars(r["averageUserRating"]),
                "formattedRatingCount": formatted_count(r["userRatingCount"]),
                "isTracked": runtime.collection.is_tracking(r["trackId"]),
            }
            for r in results
        ],
        "superseded": False,
    })


@require_POST
def country_view(request):
    form = CountryForm(request.POST)
    if not form.is_valid():
        return _form_error(form)
    runtime = get_runtime()
    runtime.collection.set_country(form.cleaned_data["country"])
    return JsonResponse({"success": True, "country": runtime.collection.country})


@require_POST
def reset_view(request):
    """Delete all tracked data."""
    removed = get_runtime().collection.remove_all()
    return JsonResponse({"success": True, "removed": removed})


# ── Refresh / sync ────────────────────────────────────────────────────────


@require_POST
def refresh_view(request):
    """Start a refresh in the background; poll the status endpoint for progress."""
    form = RefreshForm(request.POST)
    if not form.is_valid():
        return _form_error(form)

    runtime = get_runtime()
    app_id = form.cleaned_data["app_id"] or None
    if app_id and runtime.collection.find_app(app_id) is None:
        return _error("App not found.", status=404)

    started = runtime.refresher.start(
        app_ids=[app_id] if app_id else None,
        keyword_ids=form.cleaned_data["keyword_ids"] or None,
    )
    if not started:
        return _error("A refresh is already running.", status=409)
    return JsonResponse({"success": True, "started": True}, status=202)


@require_POST
def refresh_cancel_view(request):
    cancelled = get_runtime().refresher.cancel()
    return JsonResponse({"success": True, "cancelled": cancelled})


@require_POST
def sync_view(request):
    """Force a sync; it runs in the background and never blocks the request."""
    started = get_runtime().orchestrator.sync_in_background(SyncTrigger.MANUAL)
    if not started:
        return _error("A sync is already running.", status=409)
    return JsonResponse({"success": True, "started": True}, status=202)


@require_GET
def status_view(request):
    """Busy flag, refresh progress, last error and sync state as JSON."""
    runtime = get_runtime()
    status = runtime.status.get()
    status["sync_state"] = runtime.orchestrator.state.value
    status["remote_configured"] = runtime.remote_store is not None
    last = runtime.orchestrator.last_result
    status["last_sync"] = last.to_dict() if last else None
    return JsonResponse(status)
