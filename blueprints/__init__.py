"""
Blueprints package for SquadRoll
Contains modular route blueprints for different features
"""

from .auth import auth_bp
from .organizer import organizer_bp
from .team import team_bp
from .invites import invites_bp
from .public import public_bp

__all__ = ['auth_bp', 'organizer_bp', 'team_bp', 'invites_bp', 'public_bp']
