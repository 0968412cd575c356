"""FastAPI providers for the shared services built in the app lifespan."""

from fastapi import Request

from urbansetu.services.classifier_service import ImageClassifier
from urbansetu.services.complaint_repository import ComplaintRepository
from urbansetu.services.geocode_service import ReverseGeocoder
from urbansetu.services.session_service import SessionManager
from urbansetu.services.submission_events import RecentSubmissionTracker, SubmissionEventBus
from urbansetu.services.wizard_service import WizardRegistry


def get_repository(request: Request) -> ComplaintRepository:
    return request.app.state.repository


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_wizard_registry(request: Request) -> WizardRegistry:
    return request.app.state.wizards


def get_event_bus(request: Request) -> SubmissionEventBus:
    return request.app.state.events


def get_submission_tracker(request: Request) -> RecentSubmissionTracker:
    return request.app.state.tracker


def get_classifier(request: Request) -> ImageClassifier:
    return request.app.state.classifier


def get_geocoder(request: Request) -> ReverseGeocoder:
    return request.app.state.geocoder
