import logging
import os
from functools import wraps

from flask import Flask, Response, g, jsonify, request
from flask_cors import CORS
from pymongo import MongoClient
import redis

from auth_functions import get_username
from database_controller import DatabaseController
from movie_data_errors import MovieDataError
from movie_data_functions import *

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.json.sort_keys = False
CORS(app)

MONGO_MOVIE_URL = os.getenv("MONGO_MOVIE_URL", "mongodb://localhost:27017")
MONGO_MOVIE_DATABASE_NAME = os.getenv("MONGO_MOVIE_DATABASE_NAME", "reel_rating")
client = MongoClient(MONGO_MOVIE_URL)
controller = DatabaseController(client[MONGO_MOVIE_DATABASE_NAME])

r = redis.Redis(
    host=os.environ.get("REDIS_HOST", "localhost"),
    port=int(os.environ.get("REDIS_PORT", 6379)),
    db=int(os.environ.get("REDIS_DB", 0)),
)

AUTH_SERVICE_URL = os.getenv("AUTH_SERVICE_URL", "http://localhost:9080")
JWT_VERIFICATION_KEY = os.getenv("JWT_VERIFICATION_KEY", "")
JWT_ALGORITHMS = [name.strip() for name in os.getenv("JWT_ALGORITHMS", "RS256").split(",") if name.strip()]
AUTH_REQUEST_TIMEOUT_SECONDS = float(os.getenv("AUTH_REQUEST_TIMEOUT_SECONDS", 5))

CACHE_TTL_SECONDS = int(os.environ.get("CACHE_TTL_SECONDS", 600))
HOMEPAGE_MOVIE_COUNT = int(os.environ.get("HOMEPAGE_MOVIE_COUNT", 12))
MAX_MOVIE_LIST_LIMIT = int(os.environ.get("MAX_MOVIE_LIST_LIMIT", 60))
STOCK_IMAGE_DIR = os.getenv("STOCK_IMAGE_DIR", "images")
NUM_STOCK_IMAGES = int(os.getenv("NUM_STOCK_IMAGES", 3))


@app.errorhandler(MovieDataError)
def handle_movie_data_error(error: MovieDataError):
    """
    Turn service errors into JSON error payloads.

    Args:
        error (MovieDataError): Raised error carrying its HTTP status.

    Returns:
        Response: Flask response with an error payload and status code.
    """
    if error.status_code >= 500:
        logger.error("Request to %s failed: %s", request.path, error.message)
    return jsonify({"error": error.message}), error.status_code


def request_payload():
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def current_session_id():
    """
    Read the client's session id from the JSON body, falling back to the cookie.

    Returns:
        str | None: Session id when present.
    """
    session_id = request_payload().get("JSESSIONID")
    return session_id or request.cookies.get("JSESSIONID")


def login_required(view):
    """Resolve the caller through the auth service and expose it as ``g.username``."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        username = get_username(
            current_session_id(),
            AUTH_SERVICE_URL,
            JWT_VERIFICATION_KEY,
            JWT_ALGORITHMS,
            AUTH_REQUEST_TIMEOUT_SECONDS,
        )
        if not username:
            return jsonify({"error": "Unauthorized"}), 401
        g.username = username
        return view(*args, **kwargs)

    return wrapper


def after_write():
    invalidate_movie_cache(r)


def build_movie_card(movie: dict):
    """
    Serialize a movie with its most popular rating category and first tags.

    Args:
        movie (dict): Movie document.

    Returns:
        dict: Movie payload for list views.
    """
    card = serialize_document(movie)
    highlight = controller.get_most_popular_aggregated_rating(card["id"])
    card["mostPopularRatingCategory"] = highlight["ratingName"] if highlight else None
    card["mostPopRatingUpperBound"] = highlight["upperbound"] if highlight else None
    card["mostPopRatingAvg"] = highlight["averageRating"] if highlight else None
    card["attachedTags"] = controller.get_three_tags(card["id"])
    return card


def cached_movie_list(cache_key: str, loader):
    """
    Serve an enriched movie list from Redis, loading it on a miss.

    Args:
        cache_key (str): Redis key for the list.
        loader (Callable[[], list[dict]]): Returns the movie documents.

    Returns:
        list[dict]: Movie cards.
    """
    cached = get_cached(r, cache_key)
    if cached is not None:
        logger.debug("cache hit for %s", cache_key)
        return cached

    logger.debug("cache miss for %s, fetching from MongoDB", cache_key)
    cards = [build_movie_card(movie) for movie in loader()]
    set_cached(r, cache_key, CACHE_TTL_SECONDS, cards)
    return cards


@app.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


# Movies


@app.route("/movie/create", methods=["POST"])
@login_required
def create_movie():
    """
    Handle POST requests that insert a movie.

    Returns:
        Response: Flask response with the created movie and status code.
    """
    payload = request_payload()
    movie = controller.create_movie(
        payload.get("title"),
        director=payload.get("director"),
        release_date=payload.get("releaseDate"),
        runtime=payload.get("runtime"),
        writers=payload.get("writers"),
        plot_summary=payload.get("plotSummary", payload.get("summary")),
    )
    after_write()
    return jsonify(serialize_document(movie)), 201


@app.route("/movie/get/<movie_id>", methods=["POST"])
@login_required
def get_movie(movie_id: str):
    """
    Handle POST requests for a single movie.

    Args:
        movie_id (str): Hex id from the path segment.

    Returns:
        Response: Flask response with the movie card.
    """
    cache_key = build_cache_key("movie", movie_id)
    cached = get_cached(r, cache_key)
    if cached is not None:
        logger.debug("cache hit for %s", cache_key)
        return jsonify(cached)

    card = build_movie_card(controller.get_movie(movie_id))
    set_cached(r, cache_key, CACHE_TTL_SECONDS, card)
    return jsonify(card)


@app.route("/movie/update/<movie_id>", methods=["POST"])
@login_required
def update_movie(movie_id: str):
    payload = request_payload()
    fields = {key: value for key, value in payload.items() if key != "JSESSIONID"}
    movie = controller.update_movie(movie_id, fields)
    after_write()
    return jsonify(serialize_document(movie))


@app.route("/movie/delete/<movie_id>", methods=["POST"])
@login_required
def delete_movie(movie_id: str):
    controller.delete_movie(movie_id)
    after_write()
    return jsonify({"message": "Movie deleted"})


@app.route("/movie/getByTitle/<title>", methods=["POST"])
@login_required
def get_movies_with_title(title: str):
    return jsonify([serialize_document(movie) for movie in controller.get_movies_with_title(title)])


@app.route("/movie/getByTagName/<tag_name>", methods=["POST"])
@login_required
def get_movies_with_tag_name(tag_name: str):
    return jsonify([serialize_document(movie) for movie in controller.get_movies_with_tag(tag_name)])


@app.route("/movie/getByRatingCategoryName/<rating_category_name>", methods=["POST"])
@login_required
def get_movies_with_rating_category_name(rating_category_name: str):
    movies = controller.get_movies_with_rating_category(rating_category_name)
    return jsonify([serialize_document(movie) for movie in movies])


@app.route("/movie/getByRatingCategory", methods=["POST"])
@login_required
def get_movies_by_rating_category():
    """
    Handle POST requests for movies rated in a category on a given scale.

    Returns:
        Response: Flask response with the matching movies.
    """
    payload = request_payload()
    rating_name = require_text(payload.get("ratingName"), "ratingName")
    movies = controller.get_movies_with_rating_category(rating_name, payload.get("upperbound"))
    return jsonify([serialize_document(movie) for movie in movies])


@app.route("/movie/getByActor/<actor_name>", methods=["POST"])
@login_required
def get_movies_with_actor(actor_name: str):
    return jsonify([serialize_document(movie) for movie in controller.get_movies_with_actor(actor_name)])


@app.route("/movie/getMoviesWithMostReviews", methods=["POST"])
@login_required
def get_movies_with_most_reviews():
    """
    Handle POST requests for the most reviewed movies.

    Returns:
        Response: Flask response with movie cards, busiest first.
    """
    limit = parse_limit_param(request_payload().get("limit"), HOMEPAGE_MOVIE_COUNT, MAX_MOVIE_LIST_LIMIT)
    cards = cached_movie_list(
        build_cache_key("most_reviewed", limit),
        lambda: controller.get_movies_with_most_reviews(limit),
    )
    return jsonify(cards)


@app.route("/movie/getRecentReleaseMovies", methods=["POST"])
@login_required
def get_recent_release_movies():
    """
    Handle POST requests for the latest releases.

    Returns:
        Response: Flask response with movie cards, newest release first.
    """
    limit = parse_limit_param(request_payload().get("limit"), HOMEPAGE_MOVIE_COUNT, MAX_MOVIE_LIST_LIMIT)
    cards = cached_movie_list(
        build_cache_key("recent", limit),
        lambda: controller.get_recent_release_movies(limit),
    )
    return jsonify(cards)


@app.route("/movie/getMovieImage/<movie_id>", methods=["GET"])
def get_movie_image(movie_id: str):
    """
    Handle GET requests for a movie's poster image.

    Args:
        movie_id (str): Hex id from the path segment.

    Returns:
        Response: Raw image bytes, or a 404 payload.
    """
    image_id = controller.get_movie_image_id(movie_id)
    if not image_id:
        return jsonify({"error": "Image not found"}), 404
    data, content_type = controller.get_stock_image(image_id)
    return Response(data, mimetype=content_type)


@app.route("/movie/generateStockImages", methods=["POST"])
@login_required
def generate_stock_images():
    uploaded = controller.store_stock_images(STOCK_IMAGE_DIR, NUM_STOCK_IMAGES)
    return jsonify({"uploaded": uploaded})


# Tags


@app.route("/tag/create", methods=["POST"])
@login_required
def create_tag():
    payload = request_payload()
    tag = controller.create_tag(payload.get("tagName"), require_text(payload.get("movieId"), "movieId"))
    after_write()
    return jsonify(serialize_document(tag)), 201


@app.route("/tag/delete", methods=["POST"])
@login_required
def delete_tag_from_movie():
    payload = request_payload()
    controller.delete_tag_from_movie(
        require_text(payload.get("tagName"), "tagName"),
        require_text(payload.get("movieId"), "movieId"),
    )
    after_write()
    return jsonify({"message": "Tag removed from movie"})


@app.route("/tag/deleteAll/<tag_name>", methods=["POST"])
@login_required
def delete_tag(tag_name: str):
    controller.delete_tag(tag_name)
    after_write()
    return jsonify({"message": "Tag deleted"})


@app.route("/tag/getByMovie/<movie_id>", methods=["POST"])
@login_required
def get_tags_for_movie(movie_id: str):
    movie = controller.get_movie(movie_id)
    return jsonify({"movieId": movie_id, "tagNames": list(movie.get("tagNames") or [])})


# Actors


@app.route("/actor/create", methods=["POST"])
@login_required
def create_actor():
    payload = request_payload()
    actor = controller.create_actor(payload.get("name"), payload.get("dob"), payload.get("movieTitle"))
    after_write()
    return jsonify(serialize_document(actor)), 201


@app.route("/actor/get/<actor_id>", methods=["POST"])
@login_required
def get_actor(actor_id: str):
    return jsonify(serialize_document(controller.get_actor(actor_id)))


@app.route("/actor/getByName/<name>", methods=["POST"])
@login_required
def get_actors_by_name(name: str):
    return jsonify([serialize_document(actor) for actor in controller.get_actors_by_name(name)])


@app.route("/actor/update/<actor_id>", methods=["POST"])
@login_required
def update_actor(actor_id: str):
    payload = request_payload()
    actor = controller.update_actor(
        actor_id,
        name=payload.get("name"),
        dob=payload.get("dob"),
        movies=payload.get("movies"),
    )
    after_write()
    return jsonify(serialize_document(actor))


@app.route("/actor/delete/<actor_id>", methods=["POST"])
@login_required
def delete_actor(actor_id: str):
    controller.delete_actor(actor_id)
    after_write()
    return jsonify({"message": "Actor deleted"})


# Ratings


@app.route("/rating/create", methods=["POST"])
@login_required
def create_rating():
    """
    Handle POST requests that rate a movie for the calling user.

    Returns:
        Response: Flask response with the stored rating and status code.
    """
    payload = request_payload()
    rating = controller.create_rating(
        payload.get("ratingName"),
        payload.get("userRating"),
        payload.get("upperbound"),
        g.username,
        require_text(payload.get("movieId"), "movieId"),
        payload.get("privacy"),
    )
    after_write()
    return jsonify(serialize_document(rating)), 201


@app.route("/rating/update", methods=["POST"])
@login_required
def update_rating():
    payload = request_payload()
    rating = controller.update_user_rating(
        g.username,
        require_text(payload.get("ratingName"), "ratingName"),
        require_text(payload.get("movieId"), "movieId"),
        payload.get("userRating"),
    )
    after_write()
    return jsonify(serialize_document(rating))


@app.route("/rating/delete", methods=["POST"])
@login_required
def delete_rating():
    payload = request_payload()
    controller.delete_user_rating(
        g.username,
        require_text(payload.get("ratingName"), "ratingName"),
        require_text(payload.get("movieId"), "movieId"),
    )
    after_write()
    return jsonify({"message": "Rating deleted"})


@app.route("/rating/getMine", methods=["POST"])
@login_required
def get_my_ratings():
    return jsonify([serialize_document(entry) for entry in controller.get_user_ratings(g.username, g.username)])


@app.route("/rating/getByUser/<user_name>", methods=["POST"])
@login_required
def get_user_ratings(user_name: str):
    return jsonify([serialize_document(entry) for entry in controller.get_user_ratings(user_name, g.username)])


@app.route("/rating/getByCategory/<rating_name>", methods=["POST"])
@login_required
def get_ratings_in_category(rating_name: str):
    ratings = controller.get_ratings_in_category(rating_name, g.username)
    return jsonify([serialize_document(rating) for rating in ratings])


@app.route("/rating/renameCategory", methods=["POST"])
@login_required
def rename_rating_category():
    payload = request_payload()
    renamed = controller.rename_rating_category(payload.get("ratingName"), payload.get("newRatingName"))
    after_write()
    return jsonify({"renamed": renamed})


@app.route("/rating/getSummary/<movie_id>", methods=["POST"])
@login_required
def get_rating_summary(movie_id: str):
    return jsonify(controller.get_rating_summary(movie_id))


# Reviews


@app.route("/review/create", methods=["POST"])
@login_required
def create_review():
    payload = request_payload()
    review = controller.create_review(
        require_text(payload.get("movieId"), "movieId"),
        payload.get("reviewTitle"),
        payload.get("reviewDescription"),
        g.username,
        payload.get("privacy"),
    )
    after_write()
    return jsonify(serialize_document(review)), 201


@app.route("/review/update/<review_id>", methods=["POST"])
@login_required
def update_review(review_id: str):
    payload = request_payload()
    review = controller.update_review(
        review_id,
        g.username,
        review_title=payload.get("reviewTitle"),
        review_description=payload.get("reviewDescription"),
        privacy=payload.get("privacy"),
    )
    after_write()
    return jsonify(serialize_document(review))


@app.route("/review/delete/<review_id>", methods=["POST"])
@login_required
def delete_review(review_id: str):
    controller.delete_review(review_id, g.username)
    after_write()
    return jsonify({"message": "Review deleted"})


@app.route("/review/getByMovie/<movie_id>", methods=["POST"])
@login_required
def get_reviews_by_movie(movie_id: str):
    reviews = controller.get_reviews_by_movie(movie_id, g.username)
    return jsonify([serialize_document(review) for review in reviews])


@app.route("/review/getByUser/<user_name>", methods=["POST"])
@login_required
def get_reviews_by_user(user_name: str):
    reviews = controller.get_reviews_by_user(user_name, g.username)
    return jsonify([serialize_document(review) for review in reviews])


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 5003)), debug=os.getenv("FLASK_DEBUG") == "1")
