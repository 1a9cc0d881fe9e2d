"""
Sample protected resource: a short weather forecast for authenticated callers.
"""
import random
from datetime import date, timedelta
from typing import List

from fastapi import APIRouter, Depends

from ..auth import get_current_user
from ..models import User
from ..schemas import WeatherForecast

router = APIRouter(tags=["weather"])

SUMMARIES = [
    "Freezing", "Bracing", "Chilly", "Cool", "Mild",
    "Warm", "Balmy", "Hot", "Sweltering", "Scorching",
]


def fahrenheit(celsius: int) -> int:
    return 32 + int(celsius / 0.5556)


def make_forecast(days: int = 5) -> List[WeatherForecast]:
    today = date.today()
    forecast = []
    for offset in range(1, days + 1):
        celsius = random.randint(-20, 54)
        forecast.append(WeatherForecast(
            date=today + timedelta(days=offset),
            temperature_c=celsius,
            temperature_f=fahrenheit(celsius),
            summary=random.choice(SUMMARIES),
        ))
    return forecast


@router.get("/weatherforecast", response_model=List[WeatherForecast])
def get_weather_forecast(_user: User = Depends(get_current_user)):
    return make_forecast()
