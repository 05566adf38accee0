import multiprocessing

# Carts live in the signed session cookie, so workers share no state
workers = multiprocessing.cpu_count() * 2 + 1
threads = 2
worker_class = 'gthread'

timeout = 60
max_requests = 1000
max_requests_jitter = 100
keepalive = 5

# Logging
accesslog = '-'
errorlog = '-'
loglevel = 'info'
capture_output = True
