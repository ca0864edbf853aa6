from conftest import STOCK_IMAGE_ID

ALICE = {"JSESSIONID": "alice-session"}
BOB = {"JSESSIONID": "bob-session"}


def post(client, path, session=ALICE, **body):
    return client.post(path, json={**session, **body})


def create_movie(client, title="Arrival", release_date="2016-11-11"):
    response = post(client, "/movie/create", title=title, director="Denis Villeneuve", releaseDate=release_date, runtime=116)
    assert response.status_code == 201
    return response.get_json()["id"]


def test_health_is_public(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_requests_without_valid_session_are_unauthorized(client):
    assert client.post("/movie/create", json={"title": "Arrival"}).status_code == 401
    assert post(client, "/movie/getRecentReleaseMovies", session={"JSESSIONID": "forged"}).status_code == 401


def test_session_cookie_is_accepted(client):
    client.set_cookie("JSESSIONID", "alice-session")
    response = client.post("/movie/create", json={"title": "Arrival"})
    assert response.status_code == 201


def test_create_and_fetch_movie(client):
    movie_id = create_movie(client)

    response = post(client, f"/movie/get/{movie_id}")
    assert response.status_code == 200
    movie = response.get_json()
    assert movie["title"] == "Arrival"
    assert movie["movieImageId"] == STOCK_IMAGE_ID
    assert movie["attachedTags"] == []
    assert movie["mostPopularRatingCategory"] is None

    duplicate = post(client, "/movie/create", title="Arrival")
    assert duplicate.status_code == 409
    assert "already exists" in duplicate.get_json()["error"]


def test_unknown_movie_is_404_and_bad_input_is_400(client):
    assert post(client, "/movie/get/65f0000000000000000000ff").status_code == 404
    assert post(client, "/movie/get/garbage").status_code == 404
    assert post(client, "/movie/create", title="Dune", releaseDate="soon").status_code == 400


def test_home_page_lists_are_enriched_and_refreshed_after_writes(client):
    arrival_id = create_movie(client)
    post(client, "/tag/create", tagName="Sci-Fi", movieId=arrival_id)
    post(client, "/rating/create", ratingName="Stickiness", userRating=4, upperbound=5, movieId=arrival_id)
    post(client, "/rating/create", session=BOB, ratingName="Stickiness", userRating=2, upperbound=5, movieId=arrival_id)

    recent = post(client, "/movie/getRecentReleaseMovies").get_json()
    assert [movie["title"] for movie in recent] == ["Arrival"]
    assert recent[0]["attachedTags"] == ["Sci-Fi"]
    assert recent[0]["mostPopularRatingCategory"] == "Stickiness"
    assert recent[0]["mostPopRatingUpperBound"] == 5
    assert recent[0]["mostPopRatingAvg"] == 3.0

    create_movie(client, "Dune", "2021-10-22")
    recent = post(client, "/movie/getRecentReleaseMovies").get_json()
    assert [movie["title"] for movie in recent] == ["Dune", "Arrival"]


def test_most_reviewed_movies(client):
    arrival_id = create_movie(client)
    dune_id = create_movie(client, "Dune", "2021-10-22")
    post(client, "/review/create", movieId=dune_id, reviewDescription="Sandy.")
    post(client, "/review/create", session=BOB, movieId=dune_id, reviewDescription="Worms.")
    post(client, "/review/create", movieId=arrival_id, reviewDescription="Lovely.")

    ranked = post(client, "/movie/getMoviesWithMostReviews", limit=1).get_json()
    assert [(movie["title"], movie["reviewCount"]) for movie in ranked] == [("Dune", 2)]


def test_rename_through_update_endpoint_reaches_reviews(client):
    movie_id = create_movie(client)
    post(client, "/review/create", movieId=movie_id, reviewTitle="Wow", reviewDescription="Loved it.")

    response = post(client, f"/movie/update/{movie_id}", title="Story of Your Life", director="D. Villeneuve")
    assert response.status_code == 200
    assert response.get_json()["title"] == "Story of Your Life"

    reviews = post(client, "/review/getByUser/alice").get_json()
    assert reviews[0]["movieTitle"] == "Story of Your Life"
    assert post(client, "/movie/getByTitle/Arrival").get_json() == []

    assert post(client, f"/movie/update/{movie_id}", budget=10).status_code == 400


def test_movie_lookups_by_tag_actor_and_category(client):
    movie_id = create_movie(client)
    post(client, "/tag/create", tagName="Sci-Fi", movieId=movie_id)
    post(client, "/actor/create", name="Amy Adams", dob="1974-08-20", movieTitle="Arrival")
    post(client, "/rating/create", ratingName="Stickiness", userRating=4, upperbound=5, movieId=movie_id)

    assert [m["title"] for m in post(client, "/movie/getByTagName/Sci-Fi").get_json()] == ["Arrival"]
    assert [m["title"] for m in post(client, "/movie/getByActor/Amy Adams").get_json()] == ["Arrival"]
    assert [m["title"] for m in post(client, "/movie/getByRatingCategoryName/Stickiness").get_json()] == ["Arrival"]
    assert [m["title"] for m in post(client, "/movie/getByRatingCategory", ratingName="Stickiness", upperbound=5).get_json()] == ["Arrival"]
    assert post(client, "/movie/getByRatingCategory", ratingName="Stickiness", upperbound=10).get_json() == []
    assert post(client, f"/tag/getByMovie/{movie_id}").get_json() == {"movieId": movie_id, "tagNames": ["Sci-Fi"]}


def test_tag_deletion_endpoints(client):
    movie_id = create_movie(client)
    post(client, "/tag/create", tagName="Sci-Fi", movieId=movie_id)
    post(client, "/tag/create", tagName="Slow Burn", movieId=movie_id)

    assert post(client, "/tag/delete", tagName="Sci-Fi", movieId=movie_id).status_code == 200
    assert post(client, "/tag/deleteAll/Slow Burn").status_code == 200
    assert post(client, f"/tag/getByMovie/{movie_id}").get_json()["tagNames"] == []
    assert post(client, "/tag/deleteAll/Slow Burn").status_code == 404


def test_actor_endpoints(client):
    create_movie(client)
    create_movie(client, "Sicario", "2015-09-18")
    actor = post(client, "/actor/create", name="Emily Blunt", dob="1983-02-23", movieTitle="Sicario").get_json()
    actor_id = actor["id"]

    assert post(client, "/actor/create", name="Emily Blunt").status_code == 409
    updated = post(client, f"/actor/update/{actor_id}", movies=["Sicario", "Arrival"]).get_json()
    assert updated["movies"] == ["Sicario", "Arrival"]
    assert [a["name"] for a in post(client, "/actor/getByName/Emily Blunt").get_json()] == ["Emily Blunt"]
    assert post(client, f"/actor/get/{actor_id}").get_json()["dob"] == "1983-02-23"

    assert post(client, f"/actor/delete/{actor_id}").status_code == 200
    assert post(client, "/movie/getByActor/Emily Blunt").get_json() == []


def test_rating_endpoints_use_the_session_user(client):
    movie_id = create_movie(client)
    created = post(client, "/rating/create", ratingName="Stickiness", userRating=4, upperbound=5, movieId=movie_id, userName="mallory")
    assert created.status_code == 201
    assert created.get_json()["userName"] == "alice"

    assert post(client, "/rating/create", ratingName="Stickiness", userRating=9, upperbound=5, movieId=movie_id).status_code == 400
    assert post(client, "/rating/update", ratingName="Stickiness", movieId=movie_id, userRating=5).status_code == 200
    assert post(client, "/rating/update", session=BOB, ratingName="Stickiness", movieId=movie_id, userRating=5).status_code == 404

    mine = post(client, "/rating/getMine").get_json()
    assert [(entry["ratingName"], entry["userRating"]) for entry in mine] == [("Stickiness", 5.0)]
    assert len(post(client, "/rating/getByUser/alice", session=BOB).get_json()) == 1
    assert len(post(client, "/rating/getByCategory/Stickiness").get_json()) == 1

    summary = post(client, f"/rating/getSummary/{movie_id}").get_json()
    assert summary == [{"ratingName": "Stickiness", "upperbound": 5, "averageRating": 5.0, "ratingCount": 1}]

    assert post(client, "/rating/renameCategory", ratingName="Stickiness", newRatingName="Staying Power").get_json() == {"renamed": 1}
    assert post(client, "/rating/delete", ratingName="Staying Power", movieId=movie_id).status_code == 200
    assert post(client, "/rating/getMine").get_json() == []


def test_review_endpoints_enforce_authorship_and_privacy(client):
    movie_id = create_movie(client)
    review = post(client, "/review/create", movieId=movie_id, reviewTitle="Hmm", reviewDescription="Private notes.", privacy="private").get_json()
    review_id = review["id"]

    assert post(client, f"/review/getByMovie/{movie_id}", session=BOB).get_json() == []
    assert len(post(client, f"/review/getByMovie/{movie_id}").get_json()) == 1

    assert post(client, f"/review/update/{review_id}", session=BOB, reviewTitle="Mine").status_code == 403
    updated = post(client, f"/review/update/{review_id}", privacy="public").get_json()
    assert updated["privacy"] == "public"
    assert len(post(client, f"/review/getByMovie/{movie_id}", session=BOB).get_json()) == 1

    assert post(client, f"/review/delete/{review_id}", session=BOB).status_code == 403
    assert post(client, f"/review/delete/{review_id}").status_code == 200


def test_delete_movie_endpoint(client):
    movie_id = create_movie(client)
    post(client, "/review/create", movieId=movie_id, reviewDescription="Gone soon.")

    assert post(client, f"/movie/delete/{movie_id}").status_code == 200
    assert post(client, f"/movie/get/{movie_id}").status_code == 404
    assert post(client, "/review/getByUser/alice").get_json() == []


def test_movie_image_is_served_without_session(client):
    movie_id = create_movie(client)

    response = client.get(f"/movie/getMovieImage/{movie_id}")
    assert response.status_code == 200
    assert response.data == b"jpeg-bytes"
    assert response.mimetype == "image/jpeg"
    assert client.get("/movie/getMovieImage/65f0000000000000000000ff").status_code == 404


def test_movie_without_image_returns_404(client, image_store):
    image_store.images.clear()
    movie_id = create_movie(client)
    assert client.get(f"/movie/getMovieImage/{movie_id}").status_code == 404


def test_generate_stock_images_uses_configured_directory(client, image_store):
    import movie_data

    response = post(client, "/movie/generateStockImages")
    assert response.status_code == 200
    assert image_store.store_calls == [(movie_data.STOCK_IMAGE_DIR, movie_data.NUM_STOCK_IMAGES)]


def test_cached_movie_card_reflects_new_tags_and_ratings(client):
    movie_id = create_movie(client)
    first = post(client, f"/movie/get/{movie_id}").get_json()
    assert first["attachedTags"] == []

    post(client, "/tag/create", tagName="Sci-Fi", movieId=movie_id)
    post(client, "/rating/create", ratingName="Stickiness", userRating=4, upperbound=5, movieId=movie_id)

    card = post(client, f"/movie/get/{movie_id}").get_json()
    assert card["attachedTags"] == ["Sci-Fi"]
    assert card["mostPopularRatingCategory"] == "Stickiness"


def test_oversized_limits_fall_back_to_default(client):
    create_movie(client)
    assert post(client, "/movie/getRecentReleaseMovies", limit="1e999").status_code == 200
    assert post(client, "/movie/getMoviesWithMostReviews", limit=1e999).status_code == 200


def test_non_text_fields_are_bad_requests(client):
    assert post(client, "/movie/create", title="Dune", director=5).status_code == 400
    assert post(client, "/movie/create", title=["Dune"]).status_code == 400
    movie_id = create_movie(client)
    assert post(client, "/review/create", movieId=movie_id, reviewTitle={"a": 1}, reviewDescription="Fine.").status_code == 400
