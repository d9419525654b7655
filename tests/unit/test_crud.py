import pytest
from sqlalchemy.exc import IntegrityError

from mediatrack import crud, models


def _add(db, tmdb_id, media_type="movie", title=None, popularity=1.0, user_id=1):
    return crud.insert_media_item(db, user_id, {
        "tmdb_id": tmdb_id, "media_type": media_type, "title": title or f"Title {tmdb_id}",
        "popularity": popularity, "genres": ["Drama"],
    })


def test_unique_index_rejects_duplicates(db):
    _add(db, 1)
    with pytest.raises(IntegrityError):
        _add(db, 1)
    # Same title under another type is a different row
    _add(db, 1, media_type="anime")
    assert crud.media_exists(db, 1, 1, "movie")
    assert crud.media_exists(db, 1, 1, "anime")
    assert not crud.media_exists(db, 1, 1, "series")
    assert not crud.media_exists(db, 2, 1, "movie")


def test_collection_created_once(db):
    meta = {"name": "Saga", "poster_path": "https://img/s.jpg"}
    first, created = crud.find_or_create_collection(db, 1, 77, meta)
    again, created_again = crud.find_or_create_collection(db, 1, 77, meta)
    assert created is True
    assert created_again is False
    assert again.id == first.id
    _, other_user_created = crud.find_or_create_collection(db, 2, 77, meta)
    assert other_user_created is True


def test_progress_row_is_created_with_defaults(db):
    progress = crud.read_progress(db, 1)
    assert progress.phase == "movies"
    assert progress.movies_page == 1
    assert progress.movies_total_pages == 500
    assert progress.is_importing is False
    assert db.query(models.ImportProgress).count() == 1
    crud.read_progress(db, 1)
    assert db.query(models.ImportProgress).count() == 1


def test_write_progress_merges_and_validates(db):
    crud.write_progress(db, 1, movies_page=7, movies_imported=300)
    progress = crud.write_progress(db, 1, is_importing=True)
    assert progress.movies_page == 7
    assert progress.movies_imported == 300
    assert progress.is_importing is True
    with pytest.raises(ValueError):
        crud.write_progress(db, 1, bogus=5)


def test_reset_zeroes_everything_but_last_sync(db):
    from mediatrack.utils.timezone import utc_now
    crud.write_progress(db, 1, phase="series", movies_page=501, series_page=40, movies_imported=9000,
                        collections_discovered=12, is_importing=True, completed_at=utc_now(), last_sync_at=utc_now())
    progress = crud.reset_progress(db, 1)
    assert progress.phase == "movies"
    assert (progress.movies_page, progress.series_page) == (1, 1)
    assert progress.movies_imported == 0
    assert progress.collections_discovered == 0
    assert progress.is_importing is False
    assert progress.completed_at is None
    assert progress.last_sync_at is not None


def test_upload_marks_toggle(db):
    assert crud.toggle_upload_mark(db, 1, "603-movie") is True
    assert crud.list_upload_marks(db, 1) == {"603-movie"}
    assert crud.list_upload_marks(db, 2) == set()
    assert crud.toggle_upload_mark(db, 1, "603-movie") is False
    assert crud.list_upload_marks(db, 1) == set()


def test_list_media_filters(db):
    _add(db, 1, title="The Matrix", popularity=90)
    _add(db, 2, media_type="anime", title="Akira", popularity=50)
    _add(db, 3, media_type="series", title="Dark Matrix", popularity=70)
    _add(db, 4, title="Other user", user_id=2)
    crud.toggle_upload_mark(db, 1, "1-movie")

    assert [m.tmdb_id for m in crud.list_media(db, 1)] == [1, 3, 2]
    assert [m.tmdb_id for m in crud.list_media(db, 1, media_type="anime")] == [2]
    assert [m.tmdb_id for m in crud.list_media(db, 1, search="matrix")] == [1, 3]
    assert [m.tmdb_id for m in crud.list_media(db, 1, uploaded=True)] == [1]
    assert [m.tmdb_id for m in crud.list_media(db, 1, uploaded=False)] == [3, 2]
    assert [m.tmdb_id for m in crud.list_media(db, 1, limit=1, offset=1)] == [3]
    assert crud.list_media(db, 1, media_type="movie")[0].genre_list == ["Drama"]


def test_list_user_ids(db):
    assert crud.list_user_ids(db) == [1, 2]
