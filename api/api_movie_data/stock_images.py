import logging
import mimetypes
import random
from pathlib import Path

from gridfs import GridFSBucket
from gridfs.errors import NoFile
from pymongo.database import Database

from movie_data_errors import NotFoundError
from movie_data_functions import parse_object_id

logger = logging.getLogger(__name__)

STOCK_IMAGE_BUCKET = "stockMovieImages"


def stock_image_name(number: int):
    return f"stockImage{number}.jpg"


class StockImageStore:
    """
    Stock poster images kept in a GridFS bucket.

    Movies do not upload their own posters; each new movie points at one of the
    stock images picked at random.
    """

    def __init__(self, database: Database, bucket_name: str = STOCK_IMAGE_BUCKET):
        self.database = database
        self.bucket_name = bucket_name
        self._bucket = None

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = GridFSBucket(self.database, bucket_name=self.bucket_name)
        return self._bucket

    def store_stock_images(self, directory: str | Path, count: int):
        """
        Upload ``stockImage1.jpg`` .. ``stockImage<count>.jpg`` from a directory.

        Files already present in the bucket are skipped, so the call can be repeated.

        Args:
            directory (str | Path): Folder holding the image files.
            count (int): Number of stock images expected.

        Returns:
            list[str]: Hex ids of the images uploaded by this call.
        """
        uploaded = []
        base = Path(directory)
        for number in range(1, count + 1):
            filename = stock_image_name(number)
            if self.find_image_id(filename):
                continue
            path = base / filename
            if not path.is_file():
                logger.warning("Stock image %s is missing from %s", filename, base)
                continue
            with path.open("rb") as image:
                file_id = self.bucket.upload_from_stream(filename, image)
            logger.info("Stored stock image %s as %s", filename, file_id)
            uploaded.append(str(file_id))
        return uploaded

    def find_image_id(self, filename: str):
        for grid_out in self.bucket.find({"filename": filename}).limit(1):
            return str(grid_out._id)
        return None

    def random_image_id(self):
        """
        Pick a stored stock image at random.

        Returns:
            str | None: Hex id of the image, or None when the bucket is empty.
        """
        image_ids = [str(grid_out._id) for grid_out in self.bucket.find({})]
        if not image_ids:
            return None
        return random.choice(image_ids)

    def read_image(self, hex_id: str):
        """
        Read a stored image.

        Args:
            hex_id (str): Hex id of the GridFS file.

        Returns:
            tuple[bytes, str]: Image bytes and their content type.

        Raises:
            NotFoundError: No image exists with that id.
        """
        file_id = parse_object_id(hex_id, "Image")
        try:
            stream = self.bucket.open_download_stream(file_id)
        except NoFile:
            raise NotFoundError("Image not found")
        with stream:
            data = stream.read()
            content_type = mimetypes.guess_type(stream.filename or "")[0] or "application/octet-stream"
        return data, content_type
