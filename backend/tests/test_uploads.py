"""Tests for attachment uploads and download access."""

import io
import os
from pathlib import Path


def upload(client, headers, name="screenshot.png", content=b"fake image data"):
    return client.post(
        "/api/uploads/",
        headers=headers,
        files={"file": (name, io.BytesIO(content), "application/octet-stream")}
    )


def test_upload_image_flow(client, directory):
    response = upload(client, directory.headers["bob"])
    assert response.status_code == 200
    data = response.json()
    assert data["original_name"] == "screenshot.png"
    assert data["mime_type"] == "image/png"
    assert data["size"] == len(b"fake image data")
    assert data["thumbnail_path"] is None
    assert data["filename"].endswith(".png")
    assert Path(data["path"]).exists()
    assert Path(data["path"]).parent == Path(os.environ["UPLOAD_DIR"])


def test_upload_invalid_type(client, directory):
    response = upload(client, directory.headers["bob"], name="script.exe")
    assert response.status_code == 400


def test_upload_requires_authentication(client, directory):
    response = client.post(
        "/api/uploads/",
        files={"file": ("a.png", io.BytesIO(b"x"), "image/png")}
    )
    assert response.status_code == 401


def test_send_message_with_uploaded_file(client, directory):
    conv = client.post(
        "/api/conversations/direct",
        headers=directory.headers["bob"],
        json={"participant_id": directory.carol}
    ).json()
    descriptor = upload(client, directory.headers["bob"], name="invoice.pdf", content=b"%PDF-1.4").json()

    response = client.post(
        f"/api/conversations/{conv['id']}/messages",
        headers=directory.headers["bob"],
        json={"message_type": "file", "attachments": [descriptor]}
    )
    assert response.status_code == 201
    assert response.json()["attachments"][0]["filename"] == descriptor["filename"]

    carol_token = directory.headers["carol"]["Authorization"].split()[1]
    download = client.get(f"/api/uploads/{descriptor['filename']}?token={carol_token}")
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4"

    dave_token = directory.headers["dave"]["Authorization"].split()[1]
    assert client.get(f"/api/uploads/{descriptor['filename']}?token={dave_token}").status_code == 403


def test_unattached_file_is_not_served(client, directory):
    descriptor = upload(client, directory.headers["bob"]).json()
    token = directory.headers["bob"]["Authorization"].split()[1]
    assert client.get(f"/api/uploads/{descriptor['filename']}?token={token}").status_code == 404
