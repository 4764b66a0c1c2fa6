from .blood_request import BloodRequest
from .donor import Donor
from .response_token import ResponseToken
from .notification import Notification
