import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    PORT = int(os.environ.get('PORT', '3001'))
    # Comma separated; FRONTEND_URL is appended when set
    CORS_ORIGINS = [o.strip() for o in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:5173,http://localhost:3000').split(',') if o.strip()]
    FRONTEND_URL = os.environ.get('FRONTEND_URL')
    # Auto-advance after a round the Suspects survived (seconds)
    ROUND_TRANSITION_DELAY_SEC = float(os.environ.get('ROUND_TRANSITION_DELAY_SEC', '3'))
    # Optional: heartbeat interval for timer worker logs (sec). 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
    # Optional: seed role assignment and rotation
    RNG_SEED = int(os.environ['RNG_SEED']) if os.environ.get('RNG_SEED') else None
    # Delegated (proof-backed) verification through the relayer
    USE_BLOCKCHAIN = os.environ.get('USE_BLOCKCHAIN') == 'true'
    RELAYER_URL = os.environ.get('RELAYER_URL')
    RELAYER_API_KEY = os.environ.get('RELAYER_API_KEY')
    RELAYER_TIMEOUT_SEC = float(os.environ.get('RELAYER_TIMEOUT_SEC', '30'))
    DIVINE_WRATH_CONTRACT_ID = os.environ.get('DIVINE_WRATH_CONTRACT_ID')
