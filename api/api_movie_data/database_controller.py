"""
Data access for the movie data service.

Movies, tags and actors reference each other by name (movie titles, tag names,
actor names) and ratings/reviews carry a copy of the movie title. MongoDB gives
no transactions here, so every multi-collection operation is written so that
running it again after a partial failure finishes the job: references are
changed with ``$addToSet``/``$pull`` or keyed on the old value, and the owning
document is written last.
"""
import logging

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from movie_data_errors import DuplicateError, NotFoundError, PermissionDeniedError, ValidationError
from movie_data_functions import (
    normalize_privacy,
    optional_text,
    parse_name_list,
    parse_object_id,
    parse_release_date,
    replace_in_list,
    require_text,
    safe_float,
    safe_int,
    utc_now,
)
from stock_images import StockImageStore

logger = logging.getLogger(__name__)

MOVIE_UPDATABLE_FIELDS = ("title", "director", "releaseDate", "runtime", "plotSummary", "writers")
MIN_UPPERBOUND = 1
MAX_UPPERBOUND = 10


class DatabaseController:
    """CRUD operations over the movie database, keeping denormalized references in sync."""

    def __init__(self, database: Database, image_store: StockImageStore | None = None):
        self.database = database
        self.image_store = image_store or StockImageStore(database)
        self._indexes_ready = False

    def ensure_indexes(self):
        """
        Create the unique indexes behind name references.

        Titles, tag names and actor names are foreign keys elsewhere, and a user
        holds one rating per movie and category. Called on first collection access
        so that building the controller does not contact the server.
        """
        self.database["movies"].create_index("title", unique=True)
        self.database["tags"].create_index("tagName", unique=True)
        self.database["actors"].create_index("name", unique=True)
        self.database["ratings"].create_index(
            [("userName", ASCENDING), ("ratingName", ASCENDING), ("movieId", ASCENDING)], unique=True
        )
        self.database["userAssociatedRatings"].create_index("userName", unique=True)
        self._indexes_ready = True

    def _collection(self, name: str):
        if not self._indexes_ready:
            self.ensure_indexes()
        return self.database[name]

    @property
    def movies(self):
        return self._collection("movies")

    @property
    def tags(self):
        return self._collection("tags")

    @property
    def actors(self):
        return self._collection("actors")

    @property
    def ratings(self):
        return self._collection("ratings")

    @property
    def user_associated_ratings(self):
        return self._collection("userAssociatedRatings")

    @property
    def reviews(self):
        return self._collection("reviews")

    # Shared helpers

    @staticmethod
    def _upsert(collection, query: dict, update: dict):
        # A concurrent upsert of the same key loses to the unique index; the retry then matches.
        try:
            collection.update_one(query, update, upsert=True)
        except DuplicateKeyError:
            collection.update_one(query, update, upsert=True)

    def _find_movie(self, movie_id: str):
        movie = self.movies.find_one({"_id": parse_object_id(movie_id, "Movie")})
        if not movie:
            raise NotFoundError("Movie not found")
        return movie

    def _find_actor(self, actor_id: str):
        actor = self.actors.find_one({"_id": parse_object_id(actor_id, "Actor")})
        if not actor:
            raise NotFoundError("Actor not found")
        return actor

    def _find_review(self, review_id: str):
        review = self.reviews.find_one({"_id": parse_object_id(review_id, "Review")})
        if not review:
            raise NotFoundError("Review not found")
        return review

    def _rename_in_array(self, collection, field: str, old: str, new: str):
        """
        Replace ``old`` with ``new`` inside an array field on every matching document.

        Args:
            collection (Collection): Collection to rewrite.
            field (str): Array field holding the reference.
            old (str): Value being renamed.
            new (str): Replacement value.

        Returns:
            int: Number of documents rewritten.
        """
        rewritten = 0
        for document in collection.find({field: old}, {field: 1}):
            collection.update_one(
                {"_id": document["_id"]},
                {"$set": {field: replace_in_list(document.get(field), old, new)}},
            )
            rewritten += 1
        return rewritten

    def _rewrite_user_ratings(self, query: dict, rewrite):
        """
        Rewrite the embedded rating entries of matching ``userAssociatedRatings`` documents.

        Args:
            query (dict): Filter selecting the user documents to touch.
            rewrite (Callable[[dict], dict | None]): Returns the new entry, or None to drop it.
        """
        for document in self.user_associated_ratings.find(query):
            entries = []
            for entry in document.get("ratings") or []:
                rewritten = rewrite(entry)
                if rewritten is not None:
                    entries.append(rewritten)
            self.user_associated_ratings.update_one({"_id": document["_id"]}, {"$set": {"ratings": entries}})

    @staticmethod
    def _parse_runtime(runtime):
        if runtime is None or str(runtime).strip() == "":
            return None
        minutes = safe_int(runtime, -1)
        if minutes < 0:
            raise ValidationError("runtime must be a number of minutes")
        return minutes

    # Movies

    def create_movie(self, title: str, director: str | None = None, release_date: str | None = None, runtime=None, writers=None, plot_summary: str | None = None):
        """
        Insert a movie with empty reference lists and a random stock image.

        Args:
            title (str): Movie title, unique across the collection.
            director (str | None): Director name.
            release_date (str | None): Release date, normalized to ``YYYY-MM-DD``.
            runtime (Any): Runtime in minutes.
            writers (list[str] | str | None): Writers as a list or comma-separated string.
            plot_summary (str | None): Short plot description.

        Returns:
            dict: The stored movie document.
        """
        title = require_text(title, "title")
        if self.movies.find_one({"title": title}, {"_id": 1}):
            raise DuplicateError(f"A movie titled '{title}' already exists")

        document = {
            "title": title,
            "director": optional_text(director, "director"),
            "releaseDate": parse_release_date(release_date),
            "runtime": self._parse_runtime(runtime),
            "writers": parse_name_list(writers),
            "plotSummary": optional_text(plot_summary, "plotSummary"),
            "movieImageId": self.image_store.random_image_id(),
            "tagNames": [],
            "principalCast": [],
            "ratingCategoryNames": [],
            "dateTimeCreated": utc_now(),
        }
        try:
            result = self.movies.insert_one(document)
        except DuplicateKeyError:
            raise DuplicateError(f"A movie titled '{title}' already exists")
        logger.info("Created movie %s (%s)", title, result.inserted_id)
        return self.movies.find_one({"_id": result.inserted_id})

    def get_movie(self, movie_id: str):
        return self._find_movie(movie_id)

    def get_movies_with_title(self, title: str):
        return list(self.movies.find({"title": title}))

    def get_movies_with_tag(self, tag_name: str):
        return list(self.movies.find({"tagNames": tag_name}).sort("title", ASCENDING))

    def get_movies_with_actor(self, actor_name: str):
        return list(self.movies.find({"principalCast": actor_name}).sort("title", ASCENDING))

    def get_movies_with_rating_category(self, rating_name: str, upperbound=None):
        """
        List movies rated in a category, optionally only when the category uses a given scale.

        Args:
            rating_name (str): Rating category name.
            upperbound (Any): Scale upper bound the category must use, or None for any.

        Returns:
            list[dict]: Matching movie documents.
        """
        if upperbound is not None and str(upperbound).strip() != "":
            category = self.ratings.find_one({"ratingName": rating_name}, {"upperbound": 1})
            if not category or category.get("upperbound") != safe_int(upperbound, 0):
                return []
        return list(self.movies.find({"ratingCategoryNames": rating_name}).sort("title", ASCENDING))

    def get_recent_release_movies(self, limit: int):
        cursor = self.movies.find({"releaseDate": {"$ne": None}}).sort([("releaseDate", DESCENDING), ("title", ASCENDING)])
        return list(cursor.limit(limit))

    def get_movies_with_most_reviews(self, limit: int):
        """
        List the movies with the most reviews, busiest first.

        Args:
            limit (int): Maximum number of movies.

        Returns:
            list[dict]: Movie documents, each with a ``reviewCount`` field.
        """
        pipeline = [
            {"$group": {"_id": "$movieId", "reviewCount": {"$sum": 1}}},
            {"$sort": {"reviewCount": -1, "_id": 1}},
            {"$limit": limit},
        ]
        counts = list(self.reviews.aggregate(pipeline))
        movie_ids = [parse_object_id(entry["_id"]) for entry in counts]
        movies_by_id = {str(movie["_id"]): movie for movie in self.movies.find({"_id": {"$in": movie_ids}})}

        ranked = []
        for entry in counts:
            movie = movies_by_id.get(entry["_id"])
            if movie is None:
                continue
            movie["reviewCount"] = entry["reviewCount"]
            ranked.append(movie)
        return ranked

    def update_movie_title(self, movie_id: str, new_title: str):
        """
        Rename a movie and every copy of its title in related collections.

        The title lives in ``tags.movieTitles``, ``actors.movies``,
        ``ratings.movieTitle``, ``userAssociatedRatings.ratings[].movieTitle`` and
        ``reviews.movieTitle``. The movie document itself is renamed last.

        Args:
            movie_id (str): Hex id of the movie.
            new_title (str): Title to set.

        Returns:
            dict: The updated movie document.
        """
        new_title = require_text(new_title, "title")
        movie = self._find_movie(movie_id)
        old_title = movie["title"]
        if old_title == new_title:
            return movie

        clash = self.movies.find_one({"title": new_title, "_id": {"$ne": movie["_id"]}}, {"_id": 1})
        if clash:
            raise DuplicateError(f"A movie titled '{new_title}' already exists")

        movie_key = str(movie["_id"])
        self._rename_in_array(self.tags, "movieTitles", old_title, new_title)
        self._rename_in_array(self.actors, "movies", old_title, new_title)
        self.ratings.update_many({"movieId": movie_key}, {"$set": {"movieTitle": new_title}})
        self._rewrite_user_ratings(
            {"ratings.movieId": movie_key},
            lambda entry: {**entry, "movieTitle": new_title} if entry.get("movieId") == movie_key else entry,
        )
        self.reviews.update_many({"movieId": movie_key}, {"$set": {"movieTitle": new_title}})
        try:
            self.movies.update_one({"_id": movie["_id"]}, {"$set": {"title": new_title}})
        except DuplicateKeyError:
            raise DuplicateError(f"A movie titled '{new_title}' already exists")

        logger.info("Renamed movie %s from %r to %r", movie_key, old_title, new_title)
        return self.movies.find_one({"_id": movie["_id"]})

    def update_movie(self, movie_id: str, fields: dict):
        """
        Update editable movie fields.

        Args:
            movie_id (str): Hex id of the movie.
            fields (dict): Any of ``title``, ``director``, ``releaseDate``, ``runtime``,
                ``plotSummary`` and ``writers``.

        Returns:
            dict: The updated movie document.
        """
        unknown = sorted(set(fields) - set(MOVIE_UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(unknown)}")
        if not fields:
            raise ValidationError("Nothing to update")

        movie = self._find_movie(movie_id)
        changes = {}
        if "director" in fields:
            changes["director"] = optional_text(fields["director"], "director")
        if "releaseDate" in fields:
            changes["releaseDate"] = parse_release_date(fields["releaseDate"])
        if "runtime" in fields:
            changes["runtime"] = self._parse_runtime(fields["runtime"])
        if "plotSummary" in fields:
            changes["plotSummary"] = optional_text(fields["plotSummary"], "plotSummary")
        if "writers" in fields:
            changes["writers"] = parse_name_list(fields["writers"])

        if "title" in fields:
            self.update_movie_title(movie_id, fields["title"])
        if changes:
            self.movies.update_one({"_id": movie["_id"]}, {"$set": changes})
        return self.movies.find_one({"_id": movie["_id"]})

    def delete_movie(self, movie_id: str):
        """
        Delete a movie together with its reviews and ratings, and unlink it from tags and actors.

        Tags left without any movie are removed. The movie document goes last so a
        failed delete can be retried.

        Args:
            movie_id (str): Hex id of the movie.
        """
        movie = self._find_movie(movie_id)
        title = movie["title"]
        movie_key = str(movie["_id"])

        self.actors.update_many({"movies": title}, {"$pull": {"movies": title}})
        self.tags.update_many({"movieTitles": title}, {"$pull": {"movieTitles": title}})
        self.tags.delete_many({"movieTitles": {"$size": 0}})
        self.reviews.delete_many({"movieId": movie_key})
        self.ratings.delete_many({"movieId": movie_key})
        self._rewrite_user_ratings(
            {"ratings.movieId": movie_key},
            lambda entry: None if entry.get("movieId") == movie_key else entry,
        )
        self.movies.delete_one({"_id": movie["_id"]})
        logger.info("Deleted movie %s (%s)", title, movie_key)

    # Images

    def get_movie_image_id(self, movie_id: str):
        return self._find_movie(movie_id).get("movieImageId")

    def get_stock_image(self, image_id: str):
        return self.image_store.read_image(image_id)

    def store_stock_images(self, directory, count: int):
        return self.image_store.store_stock_images(directory, count)

    # Tags

    def create_tag(self, tag_name: str, movie_id: str):
        """
        Attach a tag to a movie, creating the tag when it does not exist yet.

        Tagging a movie twice with the same tag changes nothing.

        Args:
            tag_name (str): Tag name, for example ``"Western"``.
            movie_id (str): Hex id of the movie.

        Returns:
            dict: The tag document.
        """
        tag_name = require_text(tag_name, "tagName")
        movie = self._find_movie(movie_id)
        self._upsert(self.tags, {"tagName": tag_name}, {"$addToSet": {"movieTitles": movie["title"]}})
        self.movies.update_one({"_id": movie["_id"]}, {"$addToSet": {"tagNames": tag_name}})
        return self.tags.find_one({"tagName": tag_name})

    def get_tag(self, tag_name: str):
        tag = self.tags.find_one({"tagName": tag_name})
        if not tag:
            raise NotFoundError("Tag not found")
        return tag

    def get_three_tags(self, movie_id: str):
        return list(self._find_movie(movie_id).get("tagNames") or [])[:3]

    def delete_tag_from_movie(self, tag_name: str, movie_id: str):
        """
        Detach a tag from one movie. A tag left on no movie is deleted.

        Args:
            tag_name (str): Tag name.
            movie_id (str): Hex id of the movie.
        """
        movie = self._find_movie(movie_id)
        tagged = tag_name in (movie.get("tagNames") or [])
        tag = self.tags.find_one({"tagName": tag_name, "movieTitles": movie["title"]}, {"_id": 1})
        if not tagged and not tag:
            raise NotFoundError("Tag not found on movie")

        self.tags.update_one({"tagName": tag_name}, {"$pull": {"movieTitles": movie["title"]}})
        self.tags.delete_one({"tagName": tag_name, "movieTitles": {"$size": 0}})
        self.movies.update_one({"_id": movie["_id"]}, {"$pull": {"tagNames": tag_name}})

    def delete_tag(self, tag_name: str):
        """
        Remove a tag from every movie and delete it.

        Args:
            tag_name (str): Tag name.
        """
        tag = self.get_tag(tag_name)
        self.movies.update_many({"tagNames": tag_name}, {"$pull": {"tagNames": tag_name}})
        self.tags.delete_one({"_id": tag["_id"]})
        logger.info("Deleted tag %s", tag_name)

    # Actors

    def create_actor(self, name: str, dob: str | None = None, movie_title: str | None = None):
        """
        Add an actor, optionally as cast of an existing movie.

        Args:
            name (str): Actor name, unique across the collection.
            dob (str | None): Date of birth.
            movie_title (str | None): Title of a movie the actor appears in.

        Returns:
            dict: The stored actor document.
        """
        name = require_text(name, "name")
        dob = optional_text(dob, "dob")
        movie_title = optional_text(movie_title, "movieTitle")
        if self.actors.find_one({"name": name}, {"_id": 1}):
            raise DuplicateError(f"Actor '{name}' already exists")

        movies = []
        if movie_title:
            movie = self.movies.find_one({"title": movie_title}, {"_id": 1})
            if not movie:
                raise NotFoundError(f"Movie '{movie_title}' not found")
            movies.append(movie_title)

        try:
            result = self.actors.insert_one({"name": name, "dob": dob, "movies": movies})
        except DuplicateKeyError:
            raise DuplicateError(f"Actor '{name}' already exists")
        if movies:
            self.movies.update_one({"title": movie_title}, {"$addToSet": {"principalCast": name}})
        return self.actors.find_one({"_id": result.inserted_id})

    def get_actor(self, actor_id: str):
        return self._find_actor(actor_id)

    def get_actors_by_name(self, name: str):
        return list(self.actors.find({"name": name}))

    def update_actor(self, actor_id: str, name: str | None = None, dob: str | None = None, movies=None):
        """
        Update an actor. Renames reach the cast lists of their movies, and a new
        ``movies`` list replaces the old one on both sides.

        Every argument is checked before anything is written, so a rejected
        update leaves the actor and the cast lists as they were.

        Args:
            actor_id (str): Hex id of the actor.
            name (str | None): New name.
            dob (str | None): New date of birth.
            movies (list[str] | str | None): Complete list of movie titles.

        Returns:
            dict: The updated actor document.
        """
        actor = self._find_actor(actor_id)
        old_name = actor["name"]

        new_name = old_name
        if name is not None:
            new_name = require_text(name, "name")
            if new_name != old_name and self.actors.find_one({"name": new_name, "_id": {"$ne": actor["_id"]}}, {"_id": 1}):
                raise DuplicateError(f"Actor '{new_name}' already exists")

        if dob is not None:
            dob = optional_text(dob, "dob")

        titles = None
        if movies is not None:
            titles = parse_name_list(movies)
            known = {movie["title"] for movie in self.movies.find({"title": {"$in": titles}}, {"title": 1})}
            missing = [title for title in titles if title not in known]
            if missing:
                raise NotFoundError(f"Movies not found: {', '.join(missing)}")

        if new_name != old_name:
            self._rename_in_array(self.movies, "principalCast", old_name, new_name)
            try:
                self.actors.update_one({"_id": actor["_id"]}, {"$set": {"name": new_name}})
            except DuplicateKeyError:
                raise DuplicateError(f"Actor '{new_name}' already exists")

        if dob is not None:
            self.actors.update_one({"_id": actor["_id"]}, {"$set": {"dob": dob}})

        if titles is not None:
            previous = set(actor.get("movies") or [])
            removed = sorted(previous - set(titles))
            added = [title for title in titles if title not in previous]
            if removed:
                self.movies.update_many({"title": {"$in": removed}}, {"$pull": {"principalCast": new_name}})
            if added:
                self.movies.update_many({"title": {"$in": added}}, {"$addToSet": {"principalCast": new_name}})
            self.actors.update_one({"_id": actor["_id"]}, {"$set": {"movies": titles}})

        return self.actors.find_one({"_id": actor["_id"]})

    def delete_actor(self, actor_id: str):
        actor = self._find_actor(actor_id)
        self.movies.update_many({"principalCast": actor["name"]}, {"$pull": {"principalCast": actor["name"]}})
        self.actors.delete_one({"_id": actor["_id"]})

    # Ratings

    def _validate_rating(self, rating_name: str, user_rating, upperbound):
        upper = safe_int(upperbound, 0)
        if not MIN_UPPERBOUND <= upper <= MAX_UPPERBOUND:
            raise ValidationError(f"upperbound must be between {MIN_UPPERBOUND} and {MAX_UPPERBOUND}")

        existing = self.ratings.find_one({"ratingName": rating_name}, {"upperbound": 1})
        if existing and existing.get("upperbound") != upper:
            raise ValidationError(f"Rating category '{rating_name}' uses an upperbound of {existing.get('upperbound')}")

        return self._validate_rating_value(user_rating, upper), upper

    @staticmethod
    def _validate_rating_value(user_rating, upperbound: int):
        value = safe_float(user_rating)
        if value is None or not 0 <= value <= upperbound:
            raise ValidationError(f"userRating must be between 0 and {upperbound}")
        return value

    def _find_user_rating(self, user_name: str, rating_name: str, movie_key: str):
        rating = self.ratings.find_one({"userName": user_name, "ratingName": rating_name, "movieId": movie_key})
        if not rating:
            raise NotFoundError("Rating not found")
        return rating

    def create_rating(self, rating_name: str, user_rating, upperbound, user_name: str, movie_id: str, privacy: str | None = None):
        """
        Record a user's rating of a movie in a rating category.

        A category is created by its first rating and keeps that rating's scale.
        Each user rates a movie at most once per category.

        Args:
            rating_name (str): Category name, for example ``"Stickiness"``.
            user_rating (Any): Value on the category scale.
            upperbound (Any): Upper bound of the scale, between 1 and 10.
            user_name (str): User giving the rating.
            movie_id (str): Hex id of the movie.
            privacy (str | None): ``"public"`` or ``"private"``.

        Returns:
            dict: The stored rating document.
        """
        rating_name = require_text(rating_name, "ratingName")
        user_name = require_text(user_name, "userName")
        privacy = normalize_privacy(privacy)
        movie = self._find_movie(movie_id)
        value, upper = self._validate_rating(rating_name, user_rating, upperbound)
        movie_key = str(movie["_id"])

        if self.ratings.find_one({"userName": user_name, "ratingName": rating_name, "movieId": movie_key}, {"_id": 1}):
            raise DuplicateError(f"'{user_name}' already rated this movie for '{rating_name}'")

        entry = {
            "ratingName": rating_name,
            "userRating": value,
            "upperbound": upper,
            "movieId": movie_key,
            "movieTitle": movie["title"],
            "dateTimeCreated": utc_now(),
            "privacy": privacy,
        }
        try:
            result = self.ratings.insert_one({**entry, "userName": user_name})
        except DuplicateKeyError:
            raise DuplicateError(f"'{user_name}' already rated this movie for '{rating_name}'")
        self._upsert(self.user_associated_ratings, {"userName": user_name}, {"$push": {"ratings": entry}})
        self.movies.update_one({"_id": movie["_id"]}, {"$addToSet": {"ratingCategoryNames": rating_name}})
        return self.ratings.find_one({"_id": result.inserted_id})

    def update_user_rating(self, user_name: str, rating_name: str, movie_id: str, user_rating):
        movie = self._find_movie(movie_id)
        movie_key = str(movie["_id"])
        rating = self._find_user_rating(user_name, rating_name, movie_key)
        value = self._validate_rating_value(user_rating, rating["upperbound"])

        self.ratings.update_one({"_id": rating["_id"]}, {"$set": {"userRating": value}})
        self._rewrite_user_ratings(
            {"userName": user_name},
            lambda entry: {**entry, "userRating": value}
            if entry.get("ratingName") == rating_name and entry.get("movieId") == movie_key
            else entry,
        )
        return self.ratings.find_one({"_id": rating["_id"]})

    def delete_user_rating(self, user_name: str, rating_name: str, movie_id: str):
        """
        Remove a user's rating. The movie loses the category once nobody rates it there.

        Args:
            user_name (str): Author of the rating.
            rating_name (str): Rating category name.
            movie_id (str): Hex id of the movie.
        """
        movie = self._find_movie(movie_id)
        movie_key = str(movie["_id"])
        rating = self._find_user_rating(user_name, rating_name, movie_key)

        self._rewrite_user_ratings(
            {"userName": user_name},
            lambda entry: None
            if entry.get("ratingName") == rating_name and entry.get("movieId") == movie_key
            else entry,
        )
        self.ratings.delete_one({"_id": rating["_id"]})
        if not self.ratings.find_one({"ratingName": rating_name, "movieId": movie_key}, {"_id": 1}):
            self.movies.update_one({"_id": movie["_id"]}, {"$pull": {"ratingCategoryNames": rating_name}})

    def rename_rating_category(self, old_name: str, new_name: str):
        """
        Rename a rating category in ratings, user rating lists and movies.

        Args:
            old_name (str): Current category name.
            new_name (str): New category name, not yet in use.

        Returns:
            int: Number of ratings renamed.
        """
        old_name = require_text(old_name, "ratingName")
        new_name = require_text(new_name, "newRatingName")
        if old_name == new_name:
            return 0
        if self.ratings.find_one({"ratingName": new_name}, {"_id": 1}):
            raise DuplicateError(f"Rating category '{new_name}' already exists")
        if not self.ratings.find_one({"ratingName": old_name}, {"_id": 1}) and not self.movies.find_one({"ratingCategoryNames": old_name}, {"_id": 1}):
            raise NotFoundError("Rating category not found")

        self._rename_in_array(self.movies, "ratingCategoryNames", old_name, new_name)
        self._rewrite_user_ratings(
            {"ratings.ratingName": old_name},
            lambda entry: {**entry, "ratingName": new_name} if entry.get("ratingName") == old_name else entry,
        )
        result = self.ratings.update_many({"ratingName": old_name}, {"$set": {"ratingName": new_name}})
        logger.info("Renamed rating category %r to %r", old_name, new_name)
        return result.modified_count

    def get_user_ratings(self, user_name: str, viewer: str | None = None):
        """
        List the ratings a user has given, hiding private ones from other viewers.

        Args:
            user_name (str): Author of the ratings.
            viewer (str | None): User asking.

        Returns:
            list[dict]: Rating entries, newest first.
        """
        document = self.user_associated_ratings.find_one({"userName": user_name}) or {}
        entries = [
            {**entry, "userName": user_name}
            for entry in document.get("ratings") or []
            if viewer == user_name or entry.get("privacy") != "private"
        ]
        return sorted(entries, key=lambda entry: entry.get("dateTimeCreated"), reverse=True)

    def get_ratings_in_category(self, rating_name: str, viewer: str | None = None):
        query = {"ratingName": rating_name}
        query.update(self._visible_to(viewer))
        return list(self.ratings.find(query).sort("dateTimeCreated", DESCENDING))

    @staticmethod
    def _visible_to(viewer: str | None):
        public = {"privacy": {"$ne": "private"}}
        if not viewer:
            return public
        return {"$or": [public, {"userName": viewer}]}

    def _aggregate_ratings(self, movie_key: str):
        pipeline = [
            {"$match": {"movieId": movie_key}},
            {
                "$group": {
                    "_id": "$ratingName",
                    "upperbound": {"$first": "$upperbound"},
                    "averageRating": {"$avg": "$userRating"},
                    "ratingCount": {"$sum": 1},
                }
            },
            {"$sort": {"ratingCount": -1, "_id": 1}},
        ]
        return [
            {
                "ratingName": group["_id"],
                "upperbound": group["upperbound"],
                "averageRating": round(group["averageRating"], 2),
                "ratingCount": group["ratingCount"],
            }
            for group in self.ratings.aggregate(pipeline)
        ]

    def get_rating_summary(self, movie_id: str):
        """
        Aggregate a movie's ratings per category, most used category first.

        Private ratings count towards the aggregates; only the totals are exposed.

        Args:
            movie_id (str): Hex id of the movie.

        Returns:
            list[dict]: ``ratingName``, ``upperbound``, ``averageRating`` and ``ratingCount`` per category.
        """
        movie = self._find_movie(movie_id)
        return self._aggregate_ratings(str(movie["_id"]))

    def get_most_popular_aggregated_rating(self, movie_id: str):
        summary = self._aggregate_ratings(str(parse_object_id(movie_id)))
        return summary[0] if summary else None

    # Reviews

    def create_review(self, movie_id: str, review_title: str | None, review_description: str, user_name: str, privacy: str | None = None):
        """
        Store a free-text review. A user may review the same movie several times.

        Args:
            movie_id (str): Hex id of the movie.
            review_title (str | None): Optional headline.
            review_description (str): Review text.
            user_name (str): Author.
            privacy (str | None): ``"public"`` or ``"private"``.

        Returns:
            dict: The stored review document.
        """
        review_description = require_text(review_description, "reviewDescription")
        user_name = require_text(user_name, "userName")
        privacy = normalize_privacy(privacy)
        movie = self._find_movie(movie_id)

        result = self.reviews.insert_one(
            {
                "movieId": str(movie["_id"]),
                "movieTitle": movie["title"],
                "userName": user_name,
                "reviewTitle": optional_text(review_title, "reviewTitle"),
                "reviewDescription": review_description,
                "dateTimeCreated": utc_now(),
                "privacy": privacy,
            }
        )
        return self.reviews.find_one({"_id": result.inserted_id})

    def _own_review(self, review_id: str, user_name: str):
        review = self._find_review(review_id)
        if review.get("userName") != user_name:
            raise PermissionDeniedError("Only the author can change a review")
        return review

    def update_review(self, review_id: str, user_name: str, review_title: str | None = None, review_description: str | None = None, privacy: str | None = None):
        review = self._own_review(review_id, user_name)
        changes = {}
        if review_title is not None:
            changes["reviewTitle"] = optional_text(review_title, "reviewTitle")
        if review_description is not None:
            changes["reviewDescription"] = require_text(review_description, "reviewDescription")
        if privacy is not None:
            changes["privacy"] = normalize_privacy(privacy)
        if not changes:
            raise ValidationError("Nothing to update")

        self.reviews.update_one({"_id": review["_id"]}, {"$set": changes})
        return self.reviews.find_one({"_id": review["_id"]})

    def delete_review(self, review_id: str, user_name: str):
        review = self._own_review(review_id, user_name)
        self.reviews.delete_one({"_id": review["_id"]})

    def get_reviews_by_movie(self, movie_id: str, viewer: str | None = None):
        movie_key = str(parse_object_id(movie_id))
        query = {"movieId": movie_key}
        query.update(self._visible_to(viewer))
        return list(self.reviews.find(query).sort("dateTimeCreated", DESCENDING))

    def get_reviews_by_user(self, user_name: str, viewer: str | None = None):
        query = {"userName": user_name}
        if viewer != user_name:
            query["privacy"] = {"$ne": "private"}
        return list(self.reviews.find(query).sort("dateTimeCreated", DESCENDING))
