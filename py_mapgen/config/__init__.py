"""
Configuration modules for map generation.
"""

from .heightmap_templates import TEMPLATES, HeightmapTemplate, get_template, list_templates, pick_template
from .settings import Settings, settings

__all__ = ['TEMPLATES', 'HeightmapTemplate', 'get_template', 'list_templates', 'pick_template',
           'Settings', 'settings']
