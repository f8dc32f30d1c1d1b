"""
Configuration Management for FaceGate
Loads environment variables and provides configuration settings
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Server
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', 8000))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'logs/facegate.log')

    # Extraction backend: 'grid', 'periocular' or 'insightface'
    FACE_BACKEND = os.getenv('FACE_BACKEND', 'insightface')

    # Image normalization
    CANONICAL_SIZE = int(os.getenv('CANONICAL_SIZE', 64))
    GRID_SIZE = int(os.getenv('GRID_SIZE', 8))

    # Heuristic grid backend (MSE between z-scored vectors, lower is better)
    GRID_THRESHOLD = float(os.getenv('GRID_THRESHOLD', 0.5))
    GRID_MIN_GAP = float(os.getenv('GRID_MIN_GAP', 0.05))

    # Periocular backend (cosine similarity, higher is better)
    PERIOCULAR_THRESHOLD = float(os.getenv('PERIOCULAR_THRESHOLD', 0.93))
    PERIOCULAR_MIN_GAP = float(os.getenv('PERIOCULAR_MIN_GAP', 0.01))

    # InsightFace backend (euclidean distance on normed embeddings, lower is better)
    INSIGHTFACE_MODEL = os.getenv('INSIGHTFACE_MODEL', 'buffalo_l')
    INSIGHTFACE_THRESHOLD = float(os.getenv('INSIGHTFACE_THRESHOLD', 1.1))
    INSIGHTFACE_MIN_GAP = float(os.getenv('INSIGHTFACE_MIN_GAP', 0.05))
    GPU_ID = int(os.getenv('GPU_ID', 0))
    DET_SIZE = int(os.getenv('DET_SIZE', 640))
    MIN_DET_SCORE = float(os.getenv('MIN_DET_SCORE', 0.5))

    # Seconds a failed model load is cached before a plain call may retry it
    MODEL_RETRY_COOLDOWN = float(os.getenv('MODEL_RETRY_COOLDOWN', 0))

    # Enrollment
    MIN_ENROLLMENT_PHOTOS = int(os.getenv('MIN_ENROLLMENT_PHOTOS', 3))
