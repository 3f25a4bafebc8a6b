import os
import time

from jose import jwt

from conftest import auth


def _token(**claims):
    return jwt.encode(claims, os.environ["JWT_SECRET"], algorithm="HS256")


def test_expired_token(client):
    token = _token(sub="1", exp=int(time.time()) - 60)
    response = client.get("/cart", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token expired"


def test_wrong_scheme(client):
    response = client.get("/cart", headers={"Authorization": "Basic dXNlcjpwdw=="})
    assert response.status_code == 401


def test_non_numeric_subject(client):
    token = _token(sub="alice")
    response = client.get("/cart", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token subject"


def test_admin_route_rejects_buyer(client):
    response = client.get("/orders/admin/stats", headers=auth(1))
    assert response.status_code == 403
