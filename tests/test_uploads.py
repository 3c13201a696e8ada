import io
import os

import pytest

from errors import ErrorResponse
from uploads import save_image


class CountingStream(io.BytesIO):
    def __init__(self, data):
        super().__init__(data)
        self.requested = []

    def read(self, size=-1):
        self.requested.append(size)
        return super().read(size)


class Upload:
    def __init__(self, data, filename="campus.png", content_type="image/png"):
        self.file = CountingStream(data)
        self.filename = filename
        self.content_type = content_type


def test_reads_no_more_than_the_limit(settings):
    settings.max_file_upload = 10
    upload = Upload(b"x" * 1000)

    with pytest.raises(ErrorResponse) as exc:
        save_image(upload, "photo_1", settings)

    assert exc.value.status_code == 400
    assert upload.file.requested == [11]


def test_file_at_the_limit_is_saved(settings):
    settings.max_file_upload = 10
    upload = Upload(b"x" * 10)

    filename = save_image(upload, "photo_1", settings)

    assert filename == "photo_1.png"
    with open(os.path.join(settings.file_upload_path, filename), "rb") as fh:
        assert fh.read() == b"x" * 10
