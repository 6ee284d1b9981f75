"""HTTP handlers for the /api routes of s3drive.

Each handler performs exactly one Drive operation and shapes its result
into a JSON or streamed binary response. Errors propagate as DriveError
and are rendered by the exception handlers registered in server.py.
"""

import logging
import urllib.parse
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.requests import ClientDisconnect

from s3drive.drive import DeleteResult, Drive
from s3drive.errors import AbortedError, BadRequestError

logger = logging.getLogger(__name__)


class CreateUserRequest(BaseModel):
    """Body of POST /api."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)


def _header_value(value: str) -> str:
    """Return ``value`` if it fits a latin-1 header, else percent-encode it."""
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        return urllib.parse.quote(value)
    return value


def _parse_create_user(raw: bytes) -> CreateUserRequest:
    """Validate a raw POST /api body.

    Raises:
        BadRequestError: If the body is not JSON or has no usable userId.
    """
    try:
        return CreateUserRequest.model_validate_json(raw or b"{}")
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        ]
        raise BadRequestError("; ".join(problems) or "Invalid request body") from e


async def _request_chunks(request: Request) -> AsyncIterator[bytes]:
    """Yield the raw request body, turning a disconnect into AbortedError."""
    try:
        async for chunk in request.stream():
            if chunk:
                yield chunk
    except ClientDisconnect as e:
        raise AbortedError("Client disconnected during upload") from e


class DriveHandler:
    """Handles user and file operations.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def drive(self) -> Drive:
        """Shortcut to the Drive facade on app.state."""
        return self.app.state.drive

    async def list_users(self) -> Response:
        """GET /api -- every user id in the bucket."""
        users = await self.drive.list_users()
        return JSONResponse(content=users)

    async def list_files(self, user_id: str) -> Response:
        """GET /api/{userId} -- the user's files with sizes.

        A user with no objects at all is answered with 404.
        """
        files = await self.drive.list_files(user_id, must_exist=True)
        return JSONResponse(content=[f.to_dict() for f in files])

    async def download_file(self, user_id: str, file_name: str) -> Response:
        """GET /api/{userId}/{fileName} -- stream the file as an attachment.

        The object is opened before the response starts, so a missing file
        still gets a 404 instead of a truncated 200.
        """
        stream = await self.drive.download_file(user_id, file_name)
        headers = {
            "Content-Disposition": "attachment",
            "filename": _header_value(file_name),
        }
        if stream.size is not None:
            headers["Content-Length"] = str(stream.size)
        return StreamingResponse(
            content=stream.chunks,
            status_code=200,
            headers=headers,
            media_type="application/octet-stream",
        )

    async def create_user(self, request: Request) -> Response:
        """POST /api -- create a user from ``{"userId": ...}``.

        The body is parsed as JSON whatever the Content-Type says, so a
        plain ``curl -d`` works.
        """
        body = _parse_create_user(await request.body())
        await self.drive.create_user(body.user_id)
        return JSONResponse(content={"message": "User created successfully"})

    async def upload_files(self, user_id: str, request: Request) -> Response:
        """POST /api/{userId} -- stream a multipart form into the store.

        Responds only after every file part has been written, echoing the
        form fields and uploaded files.
        """
        content_type = request.headers.get("content-type", "")
        result = await self.drive.upload_files(user_id, _request_chunks(request), content_type)
        return JSONResponse(content={"message": "Upload successful", **result.to_dict()})

    async def delete_user(self, user_id: str) -> Response:
        """DELETE /api/{userId} -- remove the user and all their files."""
        result = await self.drive.delete_user(user_id)
        status = 404 if result is DeleteResult.NOT_FOUND else 200
        return JSONResponse(content={"message": result.value}, status_code=status)

    async def delete_file(self, user_id: str, file_name: str) -> Response:
        """DELETE /api/{userId}/{fileName} -- remove one file.

        Deleting a file that does not exist also answers 200.
        """
        await self.drive.delete_file(user_id, file_name)
        return JSONResponse(content={"message": "File deleted successfully"})
