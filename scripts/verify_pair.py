#!/usr/bin/env python3
"""
Compare two face photos with the configured (or chosen) backend.

Usage:
    python scripts/verify_pair.py enrolled.jpg captured.jpg
    python scripts/verify_pair.py enrolled.jpg captured.jpg --backend grid

Exit code 0 if the photos match, 1 otherwise.
"""

import argparse
import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from engines.face_verification.backends import BACKEND_NAMES
from engines.face_verification.errors import FaceVerificationError
from services.verification_service import FaceVerificationService

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


async def verify_pair(enrolled_path, captured_path):
    service = FaceVerificationService.from_config(Config)

    with open(enrolled_path, 'rb') as f:
        enrolled_bytes = f.read()
    with open(captured_path, 'rb') as f:
        captured_bytes = f.read()

    try:
        enrolled = await service.extract_features(enrolled_bytes)
    except FaceVerificationError as e:
        logger.error(f"Enrolled photo unusable ({type(e).__name__}): {e}")
        return False

    logger.info(f"Enrolled embedding: backend={enrolled.backend} dim={enrolled.dimension}")
    result = await service.verify_face_detailed(captured_bytes, enrolled)

    print(f"Verdict: {result.verdict.value}")
    print(f"Score:   {result.score} ({result.metric}, threshold {service.backend.policy.threshold})")
    return result.matched


def main():
    parser = argparse.ArgumentParser(description="FaceGate pair verification")
    parser.add_argument("enrolled", help="Path to the enrolled photo")
    parser.add_argument("captured", help="Path to the captured photo")
    parser.add_argument("--backend", choices=BACKEND_NAMES, default=None,
                        help="Extraction backend (default: FACE_BACKEND from env)")
    args = parser.parse_args()

    for path in (args.enrolled, args.captured):
        if not os.path.isfile(path):
            print(f"❌ File not found: {path}")
            sys.exit(1)

    if args.backend:
        Config.FACE_BACKEND = args.backend

    matched = asyncio.run(verify_pair(args.enrolled, args.captured))
    sys.exit(0 if matched else 1)


if __name__ == '__main__':
    main()
