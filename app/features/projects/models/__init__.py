from app.features.projects.models.project import Project, Url

__all__ = ["Project", "Url"]
