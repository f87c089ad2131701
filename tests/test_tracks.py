import pytest
from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from trackmap import crud, models, schemas

from conftest import auth_headers, create_track, create_user, fail_on_delete_of


def test_submit_track_with_location(client):
    response = client.post(
        "/api/tracks/",
        json={
            "name": "Pumptrack Nord",
            "type": "pumptrack",
            "location": {"type": "Point", "coordinates": [2.35, 48.85]},
            "description": "Asphalt loop",
            "imageUrl": "https://img.example.com/p.jpg",
        },
    )
    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()["data"]
    assert data["name"] == "Pumptrack Nord"
    assert data["location"] == {"type": "Point", "coordinates": [2.35, 48.85]}
    assert data["longitude"] == 2.35 and data["latitude"] == 48.85
    assert data["imageUrl"] == "https://img.example.com/p.jpg"
    assert data["reviewCount"] == 0
    assert data["averageRating"] == 0


def test_submit_track_with_separate_coordinates(client):
    response = client.post(
        "/api/tracks/",
        json={"name": "BMX Arena", "type": "bmx_track", "longitude": 7.1, "latitude": 50.7},
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["data"]["location"]["coordinates"] == [7.1, 50.7]


def test_submit_track_without_coordinates(client):
    response = client.post("/api/tracks/", json={"name": "Nowhere", "type": "skatepark"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "Coordinates are required"


def test_submit_track_with_unknown_type(client):
    response = client.post(
        "/api/tracks/",
        json={"name": "Dirt jumps", "type": "dirt", "longitude": 1, "latitude": 2},
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_duplicate_track_name(client, track):
    response = client.post(
        "/api/tracks/",
        json={"name": track.name, "type": "skatepark", "longitude": 1, "latitude": 2},
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "Track with this name already exists"


def test_list_and_read_tracks_with_ratings(client, db_session, track):
    for i, rating in enumerate([5, 5, 4]):
        user = create_user(db_session, username=f"rider{i}", email=f"r{i}@example.com")
        crud.create_review(
            db_session, user, schemas.ReviewCreate(track_id=track.id, rating=rating)
        )

    listing = client.get("/api/tracks/")
    assert listing.status_code == status.HTTP_200_OK
    tracks = listing.json()["data"]
    assert len(tracks) == 1
    assert tracks[0]["reviewCount"] == 3
    assert tracks[0]["averageRating"] == 4.7

    single = client.get(f"/api/tracks/{track.id}")
    assert single.json()["data"]["averageRating"] == 4.7


def test_read_missing_track(client):
    response = client.get("/api/tracks/999")
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"success": False, "error": "Track not found"}


def test_update_track_requires_admin(client, user, track):
    response = client.put(
        f"/api/tracks/{track.id}", json={"description": "new"}, headers=auth_headers(user)
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_rename_track_refreshes_favorite_snapshot(client, db_session, admin, user, track):
    favorite = crud.add_favorite(db_session, user, track.id)

    response = client.put(
        f"/api/tracks/{track.id}",
        json={"name": "Skatepark Lyon Confluence", "description": "Renovated"},
        headers=auth_headers(admin),
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["name"] == "Skatepark Lyon Confluence"
    assert data["description"] == "Renovated"
    assert data["longitude"] == track.longitude

    db_session.refresh(favorite)
    assert favorite.track_name == "Skatepark Lyon Confluence"


def test_rename_to_existing_name_conflicts(client, db_session, admin, track):
    other = create_track(db_session, name="Other park")
    response = client.put(
        f"/api/tracks/{other.id}", json={"name": track.name}, headers=auth_headers(admin)
    )
    assert response.status_code == status.HTTP_409_CONFLICT


def test_delete_track_cascades_only_its_children(client, db_session, admin, user, track):
    other = create_track(db_session, name="Other park")
    for t in (track, other):
        crud.create_review(db_session, user, schemas.ReviewCreate(track_id=t.id, rating=4))
        crud.add_favorite(db_session, user, t.id)
    track_id, other_id = track.id, other.id

    response = client.delete(f"/api/tracks/{track_id}", headers=auth_headers(admin))
    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["favorites"] == 1 and data["reviews"] == 1

    def count(model, **filters):
        query = select(func.count(model.id)).where(
            *[getattr(model, key) == value for key, value in filters.items()]
        )
        return db_session.execute(query).scalar_one()

    assert count(models.Track, id=track_id) == 0
    assert count(models.Review, track_id=track_id) == 0
    assert count(models.TrackFavorite, track_id=track_id) == 0
    assert count(models.Track, id=other_id) == 1
    assert count(models.Review, track_id=other_id) == 1
    assert count(models.TrackFavorite, track_id=other_id) == 1


def test_delete_missing_track(client, admin):
    response = client.delete("/api/tracks/999", headers=auth_headers(admin))
    assert response.status_code == status.HTTP_404_NOT_FOUND


def track_rows(db_session, track_id):
    return tuple(
        db_session.execute(
            select(func.count(model.id)).where(column == track_id)
        ).scalar_one()
        for model, column in (
            (models.Track, models.Track.id),
            (models.Review, models.Review.track_id),
            (models.TrackFavorite, models.TrackFavorite.track_id),
        )
    )


def test_failed_track_delete_keeps_children(db_session, user, track, monkeypatch):
    crud.create_review(db_session, user, schemas.ReviewCreate(track_id=track.id, rating=4))
    crud.add_favorite(db_session, user, track.id)
    track_id = track.id

    fail_on_delete_of(monkeypatch, db_session, "Tracks")
    with pytest.raises(SQLAlchemyError):
        crud.delete_track(db_session, track)
    monkeypatch.undo()

    assert track_rows(db_session, track_id) == (1, 1, 1)


def test_failed_track_delete_is_server_error(client, db_session, admin, user, track, monkeypatch):
    crud.create_review(db_session, user, schemas.ReviewCreate(track_id=track.id, rating=4))
    crud.add_favorite(db_session, user, track.id)
    track_id = track.id

    fail_on_delete_of(monkeypatch, db_session, "Tracks")
    response = client.delete(f"/api/tracks/{track_id}", headers=auth_headers(admin))
    monkeypatch.undo()

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json() == {"success": False, "error": "Server Error"}
    assert track_rows(db_session, track_id) == (1, 1, 1)
