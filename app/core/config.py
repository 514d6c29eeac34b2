from pydantic_settings import BaseSettings
from typing import Union
import os

class Settings(BaseSettings):
    app_name: str = "Resumable Upload Service"
    debug: bool = False

    # Storage tree: every user gets <storage_root>/<user_id>
    storage_root: str = "storage"
    upload_dir_name: str = ".tmp_upload"

    # tus settings
    tus_enabled: bool = True
    tus_chunk_size: int = 20 * 1000 * 1000  # 20MB
    tus_base_path: str = "/api/tus/"
    tus_max_size: int = 0  # 0 disables the limit

    # Handler cache (0 keeps every handler for the process lifetime)
    max_upload_handlers: int = 0

    # Authentication settings
    jwt_secret_key: str = "your-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"

    def user_root(self, user_id: Union[int, str]) -> str:
        """Filesystem root of a single user"""
        return os.path.abspath(os.path.join(self.storage_root, str(user_id)))

    def upload_dir(self, user_id: Union[int, str]) -> str:
        """Temporary upload directory of a single user"""
        return os.path.join(self.user_root(user_id), self.upload_dir_name)

    class Config:
        env_file = ".env"

settings = Settings()
