#!/usr/bin/env python3
"""Download the res10 SSD face detection model used by sleepwatch."""
import sys
import urllib.request
from pathlib import Path

MODEL_FILES = {
    "deploy.prototxt": (
        "https://raw.githubusercontent.com/opencv/opencv/master/"
        "samples/dnn/face_detector/deploy.prototxt"
    ),
    "res10_300x300_ssd_iter_140000.caffemodel": (
        "https://raw.githubusercontent.com/opencv/opencv_3rdparty/"
        "dnn_samples_face_detector_20170830/res10_300x300_ssd_iter_140000.caffemodel"
    ),
}


def download_models(target_dir, force=False):
    target = Path(target_dir)
    target.mkdir(parents=True, exist_ok=True)

    for name, url in MODEL_FILES.items():
        path = target / name
        if path.exists() and not force:
            print(f"Already present: {path}")
            continue
        print(f"Downloading {name}...")
        urllib.request.urlretrieve(url, path)
        print(f"Saved {path} ({path.stat().st_size} bytes)")
    return True


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else "models"
    force = "--force" in sys.argv
    sys.exit(0 if download_models(target, force) else 1)
