import logging
import os
import time
from typing import Any, Dict, Optional


logger = logging.getLogger("ckan-dashboard.uploads")


class UploadStore:
    """Local file storage for uploads served under a public prefix"""

    def __init__(self, upload_dir: str, public_prefix: str = "/uploads"):
        self.upload_dir = upload_dir
        self.public_prefix = public_prefix.rstrip("/")

    def save(self, filename: str, data: bytes, content_type: Optional[str] = None) -> Dict[str, Any]:
        original_name = os.path.basename(filename.replace("\\", "/")) or "upload"
        os.makedirs(self.upload_dir, exist_ok=True)

        stored_name = f"{int(time.time() * 1000)}-{original_name}"
        with open(os.path.join(self.upload_dir, stored_name), "wb") as f:
            f.write(data)

        logger.info(f"Stored upload {stored_name} ({len(data)} bytes)")
        return {
            "success": True,
            "url": f"{self.public_prefix}/{stored_name}",
            "filename": original_name,
            "size": len(data),
            "type": content_type or "application/octet-stream",
        }
