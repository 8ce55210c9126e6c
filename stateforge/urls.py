from django.urls import path
from . import views

urlpatterns = [
    path('api/validate/', views.validate, name='validate'),

    # Simulation
    path('api/simulate/', views.simulate_automaton, name='simulate'),
    path('api/simulate-stream/', views.simulate_stream, name='simulate_stream'),
    path('api/multi-run/', views.multi_run_automaton, name='multi_run'),

    # Property checking
    path('api/properties/', views.check_properties, name='properties'),
    path('api/equivalence/', views.equivalence, name='equivalence'),

    # Conversions
    path('api/convert/', views.convert_automaton, name='convert'),
    path('api/minimise-dfa/', views.minimise, name='minimise_dfa'),
    path('api/complete-dfa/', views.complete, name='complete_dfa'),
    path('api/complement-dfa/', views.complement, name='complement_dfa'),
    path('api/product-dfa/', views.product, name='product_dfa'),
    path('api/regex-to-nfa/', views.regex_to_automaton, name='regex_to_nfa'),

    # Files
    path('api/import/', views.import_file, name='import'),
    path('api/export/', views.export_file, name='export'),
]
